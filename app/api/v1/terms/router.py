from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import (
    get_current_user,
    optional_school_id_for_resource,
    school_id_for_scoped_operation,
)
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import TermResponse, TermUpdate, TermWithSessionResponse
from . import service

router = APIRouter(prefix="/api/v1/terms", tags=["terms"])


@router.get(
    "/current",
    response_model=Optional[TermWithSessionResponse],
    dependencies=[Depends(check_permission("terms", "read"))],
)
async def get_current_term(
    school_id: Optional[UUID] = Query(None, description="School (required for system admins)"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> Optional[TermWithSessionResponse]:
    """Current term of the school's active session, or null."""
    scoped_school_id = school_id_for_scoped_operation(current_user, school_id)
    try:
        return await service.get_current_term(db, scoped_school_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/{term_id}",
    response_model=TermWithSessionResponse,
    dependencies=[Depends(check_permission("terms", "read"))],
)
async def get_term(
    term_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> TermWithSessionResponse:
    try:
        return await service.get_term(db, term_id, optional_school_id_for_resource(current_user))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put(
    "/{term_id}",
    response_model=TermResponse,
    dependencies=[Depends(check_permission("terms", "update"))],
)
async def update_term(
    term_id: UUID,
    payload: TermUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> TermResponse:
    """Partial update. Dates are re-checked against the session and sibling terms."""
    try:
        return await service.update_term(db, term_id, payload, optional_school_id_for_resource(current_user))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete(
    "/{term_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(check_permission("terms", "delete"))],
)
async def delete_term(
    term_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> Response:
    try:
        await service.delete_term(db, term_id, optional_school_id_for_resource(current_user))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{term_id}/set-current",
    response_model=TermResponse,
    dependencies=[Depends(check_permission("terms", "update"))],
)
async def set_current_term(
    term_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> TermResponse:
    """Set this term as current. Other terms of the session stop being current. Session must be active."""
    try:
        return await service.set_current_term(db, term_id, optional_school_id_for_resource(current_user))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
