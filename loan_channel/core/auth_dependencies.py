from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from beanie import PydanticObjectId
from bson.errors import InvalidId
from loan_channel.core.security import decode_token
from loan_channel.database.models.user_model import User, Role, UserStatus
import logging

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


# Extracts and validates the bearer token and loads the acting user
async def get_current_user(token: str = Depends(oauth2_scheme)) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(token)
    if payload is None:
        logger.debug("Token payload is None after decoding.")
        raise credentials_exception

    subject = payload.get("sub")
    if not subject:
        logger.debug("No 'sub' field in token payload.")
        raise credentials_exception

    try:
        user_id = PydanticObjectId(subject)
    except (InvalidId, TypeError):
        logger.warning("Token subject is not a valid user id")
        raise credentials_exception

    user = await User.get(user_id, with_children=True)
    if user is None or user.deleted_at is not None:
        raise credentials_exception

    return user


# Validates that the current user is active
async def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    if current_user.status != UserStatus.ACTIVE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Account is {current_user.status.value.lower()}",
        )
    return current_user


# Builds a dependency that only lets the listed roles through
def require_roles(*roles: Role):
    allowed = set(roles)

    async def _dependency(current_user: User = Depends(get_current_active_user)) -> User:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action",
            )
        return current_user

    return _dependency
