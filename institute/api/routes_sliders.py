from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy import select, update

from ..auth.dependencies import require_admin
from ..database import db_session
from ..models import Slider, User
from ..schemas import SliderCreate, SliderRead, SliderUpdate, ok
from ..storage import delete_stored, staged_upload

router = APIRouter(prefix="/api/sliders", tags=["sliders"])


def _clear_default(session, keep_id: int | None = None) -> None:
    stmt = update(Slider).values(is_default=False)
    if keep_id is not None:
        stmt = stmt.where(Slider.id != keep_id)
    session.execute(stmt)


def _get_or_404(session, slider_id: int) -> Slider:
    slider = session.get(Slider, slider_id)
    if not slider:
        raise HTTPException(status_code=404, detail="Slider not found")
    return slider


@router.get("")
def list_sliders() -> dict:
    """Active sliders in display order."""
    with db_session() as session:
        rows = session.execute(
            select(Slider).where(Slider.is_active.is_(True)).order_by(Slider.order, Slider.id)
        ).scalars().all()
        return ok([SliderRead.model_validate(s) for s in rows])


@router.get("/all")
def list_all_sliders(_admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        rows = session.execute(select(Slider).order_by(Slider.order, Slider.id)).scalars().all()
        return ok([SliderRead.model_validate(s) for s in rows])


@router.post("", status_code=201)
def create_slider(body: SliderCreate, _admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        if body.is_default:
            _clear_default(session)
        slider = Slider(**body.model_dump())
        session.add(slider)
        session.flush()
        session.refresh(slider)
        return ok(SliderRead.model_validate(slider), "Slider created successfully")


@router.put("/{slider_id}")
def update_slider(slider_id: int, body: SliderUpdate, _admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        slider = _get_or_404(session, slider_id)
        if body.is_default:
            _clear_default(session, keep_id=slider.id)
        for field, value in body.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(slider, field, value)
        session.flush()
        session.refresh(slider)
        return ok(SliderRead.model_validate(slider), "Slider updated successfully")


@router.put("/{slider_id}/default")
def set_default_slider(slider_id: int, _admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        slider = _get_or_404(session, slider_id)
        _clear_default(session, keep_id=slider.id)
        slider.is_default = True
        session.flush()
        session.refresh(slider)
        return ok(SliderRead.model_validate(slider), "Default slider updated")


@router.post("/{slider_id}/image")
def upload_slider_image(
    slider_id: int,
    file: UploadFile = File(...),
    _admin: User = Depends(require_admin),
) -> dict:
    with db_session() as session:
        _get_or_404(session, slider_id)

    with staged_upload(file, "sliders") as staged:
        stored = staged.commit()
        with db_session() as session:
            slider = _get_or_404(session, slider_id)
            old_url = slider.image_url
            slider.image_url = stored.url
            session.flush()
            session.refresh(slider)
            result = SliderRead.model_validate(slider)

    delete_stored(old_url)
    return ok(result, "Slider image uploaded successfully")


@router.delete("/{slider_id}")
def delete_slider(slider_id: int, _admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        slider = _get_or_404(session, slider_id)
        image_url = slider.image_url
        session.delete(slider)
    delete_stored(image_url)
    return ok(message="Slider deleted successfully")
