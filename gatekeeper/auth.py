import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from gatekeeper.constants import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from gatekeeper.constants.auth import ACCESS_TOKEN_COOKIE
from gatekeeper.database import get_db
from gatekeeper.models.user import User

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# OAuth2 scheme; the cookie is accepted as well, so a missing header is not an error here
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    if "sub" not in data:
        raise ValueError("Missing 'sub' claim (email) in token data.")

    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    return jwt.encode({**data, "exp": expire}, SECRET_KEY, algorithm=ALGORITHM)


def issue_token_for(user: User) -> dict:
    """Bearer token payload returned once the login is fully authenticated."""
    return {"access_token": create_access_token({"sub": user.email}), "token_type": "Bearer"}


def decode_access_token(token: str) -> str | None:
    """E-mail from a valid token's `sub` claim, or None for any unusable token."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        logger.info("Access token expired")
        return None
    except JWTError as e:
        logger.warning(f"JWT decoding failed: {e}")
        return None

    email = payload.get("sub")
    if not email:
        logger.warning("Access token is missing 'sub' claim")
    return email


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalars().first()


async def get_current_user(
    request: Request,
    bearer_token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the user from the bearer header, falling back to the access token cookie."""
    token = bearer_token or request.cookies.get(ACCESS_TOKEN_COOKIE)
    email = decode_access_token(token) if token else None
    user = await get_user_by_email(db, email) if email else None
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_current_user_with_role(required_roles: list[str]) -> Callable[..., User]:
    """Dependency factory that rejects users outside `required_roles` with 403."""

    async def _current_user_with_role(user: User = Depends(get_current_user)) -> User:
        role_name = user.role.name if user.role else None
        if role_name not in required_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{role_name}' does not have access to this resource.",
            )
        return user

    return _current_user_with_role
