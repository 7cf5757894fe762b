from typing import Dict, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from app.auth.schemas import CurrentUser
from app.auth.security import decode_access_token


# Tokens are issued by the platform's auth service; this backend only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login-oauth")


async def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    """Resolve the authenticated caller, their school and permissions from the access token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
    except JWTError:
        raise credentials_exception

    user_id_str = payload.get("user_id") or payload.get("sub")
    role_name = payload.get("role")
    if not user_id_str or not role_name:
        raise credentials_exception

    try:
        user_id = UUID(user_id_str)
        school_id = UUID(payload["school_id"]) if payload.get("school_id") else None
    except (ValueError, TypeError, AttributeError):
        raise credentials_exception

    permissions: Dict[str, Dict[str, bool]] = payload.get("permissions") or {}

    user = CurrentUser(id=user_id, role=role_name, school_id=school_id, permissions=permissions)
    if not user.is_system_admin and user.school_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User must be associated with a school",
        )
    return user


def school_id_for_scoped_operation(current_user: CurrentUser, requested_school_id: Optional[UUID]) -> UUID:
    """School for create/list style operations.
    System admins must name the school explicitly; everyone else always gets their own school.
    """
    if current_user.is_system_admin:
        if requested_school_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="System admin must specify school_id for this operation",
            )
        return requested_school_id
    return current_user.school_id  # type: ignore[return-value]


def optional_school_id_for_resource(current_user: CurrentUser) -> Optional[UUID]:
    """School filter for operations on an existing resource. None means unscoped (system admin)."""
    if current_user.is_system_admin:
        return None
    return current_user.school_id
