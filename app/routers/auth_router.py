# app/routers/auth_router.py
from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from datetime import timedelta
from app.auth import (
    authenticate_user,
    create_access_token,
    get_password_hash,
    get_session,
    get_current_user,
    get_user_by_username,
    require_admin,
)
from app.deps import get_autosaver
from app.schemas import Token, UserCreate, UserRead, PasswordChange
from app.services.drafts import DraftAutosaver
from sqlmodel import select
from app.models import User
from sqlalchemy.ext.asyncio import AsyncSession


router = APIRouter(prefix="/auth", tags=["auth"])

@router.post("/token", response_model=Token)
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends(), session: AsyncSession = Depends(get_session)):
    user = await authenticate_user(session, form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=401, detail="Incorrect username or password")
    access_token_expires = timedelta(minutes=60*24)
    access_token = create_access_token({"sub": user.username}, expires_delta=access_token_expires)
    return {"access_token": access_token, "token_type": "bearer"}


@router.post("/users", response_model=UserRead)
async def create_user(payload: UserCreate, session: AsyncSession = Depends(get_session), admin: User = Depends(require_admin)):
    if await get_user_by_username(session, payload.username):
        raise HTTPException(status_code=400, detail="Username already exists")
    user = User(
        username=payload.username,
        hashed_password=get_password_hash(payload.password),
        name=payload.name or "Unknown",
        role=payload.role,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@router.get("/users", response_model=list[UserRead])
async def list_users(session: AsyncSession = Depends(get_session), admin: User = Depends(require_admin)):
    res = await session.execute(select(User).order_by(User.id))
    return res.scalars().all()


@router.get("/me", response_model=UserRead)
async def read_current_user(current_user: User = Depends(get_current_user)):
    return current_user


@router.post("/change-password")
async def change_password(
    payload: PasswordChange,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    # users change their own password; admins may change anyone's
    target_id = payload.user_id or current_user.id
    if target_id != current_user.id and not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Only admins can change other users' passwords")
    user = await session.get(User, target_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    user.hashed_password = get_password_hash(payload.new_password)
    session.add(user)
    await session.commit()
    return {"user_id": user.id, "changed": True}


@router.post("/logout")
async def logout(
    discard: bool = False,
    current_user: User = Depends(get_current_user),
    autosaver: DraftAutosaver = Depends(get_autosaver),
):
    # tokens are stateless; logout only decides what happens to unsaved drafts
    if discard:
        await autosaver.discard_all(current_user.id)
    else:
        await autosaver.flush(current_user.id)
    return {"logged_out": True, "drafts_discarded": discard}
