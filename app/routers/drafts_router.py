# app/routers/drafts_router.py
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from app.auth import get_current_active_user
from app.deps import get_autosaver
from app.schemas import DraftRead
from app.services.drafts import DraftAutosaver

router = APIRouter(prefix="/drafts", tags=["drafts"])


@router.get("/{form_key}", response_model=DraftRead)
async def restore_draft(form_key: str, autosaver: DraftAutosaver = Depends(get_autosaver), user=Depends(get_current_active_user)):
    data = await autosaver.restore(user.id, form_key)
    return DraftRead(form_key=form_key, state=autosaver.state(user.id, form_key).value, data=data)


@router.put("/{form_key}", response_model=DraftRead)
async def touch_draft(
    form_key: str,
    data: Dict[str, Any] = Body(...),
    autosaver: DraftAutosaver = Depends(get_autosaver),
    user=Depends(get_current_active_user),
):
    state = autosaver.touch(user.id, form_key, data)
    return DraftRead(form_key=form_key, state=state.value, data=data)


@router.delete("/{form_key}", response_model=DraftRead)
async def clear_draft(form_key: str, autosaver: DraftAutosaver = Depends(get_autosaver), user=Depends(get_current_active_user)):
    await autosaver.clear(user.id, form_key)
    return DraftRead(form_key=form_key, state=autosaver.state(user.id, form_key).value)
