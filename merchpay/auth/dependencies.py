from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from merchpay.auth.models import User
from merchpay.auth.schemas import CurrentUser
from merchpay.core.config import settings
from merchpay.db.session import get_db


# Tokens are issued by the external session provider; auto_error=False so a
# missing header is answered with the same 401 body as a bad token.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=False)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Resolve the authenticated user from the access token."""
    if not token:
        raise _unauthorized()

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise _unauthorized()

    user_id_str = payload.get("user_id") or payload.get("sub")
    if not user_id_str:
        raise _unauthorized()

    try:
        user_id = UUID(user_id_str)
    except ValueError:
        raise _unauthorized()

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user or user.status != "ACTIVE":
        raise _unauthorized()

    return CurrentUser(
        id=user.id,
        role=user.role,
        first_name=user.first_name,
        last_name=user.last_name,
        dni=user.dni,
    )
