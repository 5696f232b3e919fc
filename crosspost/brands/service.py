"""Brand profiles: hashtags, CTA templates and footers applied during adaptation."""

from __future__ import annotations

import json
from typing import List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from crosspost.storage.models import BrandProfile


class BrandNotFoundError(LookupError):
    """Raised when a brand id does not resolve within the tenant."""


def get_brand(session: Session, *, tenant_id: str, brand_id: str) -> BrandProfile:
    brand = session.scalar(
        select(BrandProfile).where(BrandProfile.id == brand_id, BrandProfile.tenant_id == tenant_id)
    )
    if brand is None:
        raise BrandNotFoundError("Brand not found")
    return brand


def get_default_brand(session: Session, *, tenant_id: str) -> Optional[BrandProfile]:
    return session.scalar(
        select(BrandProfile)
        .where(BrandProfile.tenant_id == tenant_id, BrandProfile.is_default.is_(True))
        .order_by(BrandProfile.created_at.asc())
        .limit(1)
    )


def resolve_brand(session: Session, *, tenant_id: str, brand_id: Optional[str]) -> Optional[BrandProfile]:
    if brand_id:
        return get_brand(session, tenant_id=tenant_id, brand_id=brand_id)
    return get_default_brand(session, tenant_id=tenant_id)


def list_brands(session: Session, *, tenant_id: str) -> List[BrandProfile]:
    return list(
        session.scalars(
            select(BrandProfile).where(BrandProfile.tenant_id == tenant_id).order_by(BrandProfile.created_at.asc())
        ).all()
    )


def create_brand(
    session: Session,
    *,
    tenant_id: str,
    name: str,
    company_name: Optional[str] = None,
    hashtags: Sequence[str] = (),
    cta_templates: Sequence[str] = (),
    footer: Optional[str] = None,
    is_default: bool = False,
) -> BrandProfile:
    cleaned_name = name.strip()
    if not cleaned_name:
        raise ValueError("Brand name is required")

    # The first brand of a tenant becomes its default.
    if get_default_brand(session, tenant_id=tenant_id) is None:
        is_default = True
    elif is_default:
        session.execute(
            update(BrandProfile).where(BrandProfile.tenant_id == tenant_id).values(is_default=False)
        )

    brand = BrandProfile(
        tenant_id=tenant_id,
        name=cleaned_name,
        company_name=company_name,
        is_default=is_default,
        hashtags_primary_json=json.dumps([tag for tag in hashtags if tag.strip()]),
        cta_templates_json=json.dumps([cta for cta in cta_templates if cta.strip()]),
        footer_template=footer,
    )
    session.add(brand)
    session.commit()
    return brand
