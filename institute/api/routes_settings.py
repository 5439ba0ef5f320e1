from __future__ import annotations

from fastapi import APIRouter, HTTPException

from ..database import db_session
from ..schemas import ok
from ..site_settings import PUBLIC_CATEGORIES, get_category

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("/public")
def public_settings() -> dict:
    with db_session() as session:
        return ok({c: get_category(session, c) or {} for c in PUBLIC_CATEGORIES})


@router.get("/public/{category}")
def public_setting_category(category: str) -> dict:
    if category not in PUBLIC_CATEGORIES:
        raise HTTPException(
            status_code=403,
            detail="Access denied. Only general settings are publicly available.",
        )
    with db_session() as session:
        values = get_category(session, category)
    if values is None:
        raise HTTPException(status_code=404, detail="Setting category not found")
    return ok(values)
