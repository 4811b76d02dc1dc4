import os
import hashlib
import logging
from datetime import datetime, timedelta

from jose import jwt, JWTError
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.database import AsyncSessionLocal
from app.models import User, UserRole

logger = logging.getLogger(__name__)

# Password hashing config
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

# JWT config
SECRET_KEY = os.getenv("JWT_SECRET", "supersecretlocalkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24
DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "admin")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token")


# -------------------------
# Database session
# -------------------------
async def get_session() -> AsyncSession:
    async with AsyncSessionLocal() as s:
        yield s


# -------------------------
# Password handling
# -------------------------

def safe_password(password: str) -> str:
    """
    Convert the password into a fixed-length SHA256 hex string
    before it reaches the salted argon2 hash.
    """
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def get_password_hash(password: str) -> str:
    return pwd_context.hash(safe_password(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(safe_password(plain_password), hashed_password)


# -------------------------
# Authentication logic
# -------------------------

async def get_user_by_username(session: AsyncSession, username: str):
    res = await session.execute(select(User).where(User.username == username))
    return res.scalar_one_or_none()


async def authenticate_user(session: AsyncSession, username: str, password: str):
    user = await get_user_by_username(session, username)

    if not user or not verify_password(password, user.hashed_password):
        logger.info("Failed login for %s", username)
        return None

    user.last_login = datetime.utcnow()
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def bootstrap_admin(session: AsyncSession):
    """Create the default administrator on first start, when no users exist."""
    res = await session.execute(select(User).limit(1))
    if res.scalar_one_or_none() is not None:
        return None
    admin = User(
        username="admin",
        name="System Administrator",
        role=UserRole.ADMIN,
        hashed_password=get_password_hash(DEFAULT_ADMIN_PASSWORD),
    )
    session.add(admin)
    await session.commit()
    logger.warning("Created default admin account; change its password")
    return admin


# -------------------------
# JWT token generation
# -------------------------

def create_access_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    expire = datetime.utcnow() + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})

    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


# -------------------------
# Current user dependencies
# -------------------------

async def get_current_user(
    token: str = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_session)
):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        username = payload.get("sub")
        if not username:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    user = await get_user_by_username(session, username)
    if not user:
        raise credentials_exception

    return user


async def get_current_active_user(
    current_user: User = Depends(get_current_user)
):
    return current_user


async def require_admin(
    current_user: User = Depends(get_current_user)
):
    if not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return current_user
