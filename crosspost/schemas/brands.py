"""Pydantic schemas for brand profiles."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class BrandCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    company_name: Optional[str] = Field(default=None, max_length=120)
    hashtags: List[str] = Field(default_factory=list, max_length=30)
    cta_templates: List[str] = Field(default_factory=list, max_length=10)
    footer: Optional[str] = Field(default=None, max_length=500)
    is_default: bool = False


class BrandResponse(BaseModel):
    id: str
    name: str
    company_name: Optional[str] = None
    is_default: bool
    hashtags: List[str]
    cta_templates: List[str]
    footer: Optional[str] = None
