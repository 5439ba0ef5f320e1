from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select

from ..auth.dependencies import require_admin
from ..database import db_session
from ..models import Skill, User
from ..schemas import SkillCreate, SkillRead, SkillUpdate, ok

router = APIRouter(prefix="/api/skills", tags=["skills"])


def _name_taken(session, name: str, exclude_id: Optional[int] = None) -> bool:
    stmt = select(Skill.id).where(func.lower(Skill.name) == name.strip().lower())
    if exclude_id is not None:
        stmt = stmt.where(Skill.id != exclude_id)
    return session.execute(stmt).first() is not None


@router.get("")
def list_skills(category: Optional[str] = None) -> dict:
    stmt = select(Skill).where(Skill.is_active.is_(True))
    if category:
        stmt = stmt.where(Skill.category == category)
    with db_session() as session:
        rows = session.execute(stmt.order_by(Skill.name)).scalars().all()
        return ok([SkillRead.model_validate(s) for s in rows])


@router.post("", status_code=201)
def create_skill(body: SkillCreate, _admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        if _name_taken(session, body.name):
            raise HTTPException(status_code=400, detail="Skill with this name already exists")
        skill = Skill(
            name=body.name.strip(),
            description=body.description,
            category=body.category,
            level=body.level,
        )
        session.add(skill)
        session.flush()
        session.refresh(skill)
        return ok(SkillRead.model_validate(skill), "Skill created successfully")


@router.put("/{skill_id}")
def update_skill(skill_id: int, body: SkillUpdate, _admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        skill = session.get(Skill, skill_id)
        if not skill:
            raise HTTPException(status_code=404, detail="Skill not found")
        if body.name is not None and _name_taken(session, body.name, exclude_id=skill.id):
            raise HTTPException(status_code=400, detail="Skill with this name already exists")
        for field, value in body.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(skill, field, value.strip() if field == "name" else value)
        session.flush()
        session.refresh(skill)
        return ok(SkillRead.model_validate(skill), "Skill updated successfully")


@router.delete("/{skill_id}")
def delete_skill(skill_id: int, _admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        skill = session.get(Skill, skill_id)
        if not skill:
            raise HTTPException(status_code=404, detail="Skill not found")
        skill.is_active = False
    return ok(message="Skill deleted successfully")
