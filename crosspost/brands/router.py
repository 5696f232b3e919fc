"""Brand profile routes."""

from __future__ import annotations

import json
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from crosspost.auth.dependencies import require_auth_context, require_role
from crosspost.auth.tokens import AuthContext
from crosspost.brands.service import create_brand, list_brands
from crosspost.schemas.brands import BrandCreateRequest, BrandResponse
from crosspost.storage.db import get_session
from crosspost.storage.models import BrandProfile


router = APIRouter(prefix="/brands", tags=["brands"])


def _to_response(brand: BrandProfile) -> BrandResponse:
    return BrandResponse(
        id=brand.id,
        name=brand.name,
        company_name=brand.company_name,
        is_default=brand.is_default,
        hashtags=json.loads(brand.hashtags_primary_json or "[]"),
        cta_templates=json.loads(brand.cta_templates_json or "[]"),
        footer=brand.footer_template,
    )


@router.get("", response_model=List[BrandResponse])
def list_brands_endpoint(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> List[BrandResponse]:
    return [_to_response(brand) for brand in list_brands(session, tenant_id=auth.tenant_id)]


@router.post("", response_model=BrandResponse, status_code=201)
def create_brand_endpoint(
    payload: BrandCreateRequest,
    auth: AuthContext = Depends(require_role("owner", "admin")),
    session: Session = Depends(get_session),
) -> BrandResponse:
    try:
        brand = create_brand(
            session,
            tenant_id=auth.tenant_id,
            name=payload.name,
            company_name=payload.company_name,
            hashtags=payload.hashtags,
            cta_templates=payload.cta_templates,
            footer=payload.footer,
            is_default=payload.is_default,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _to_response(brand)
