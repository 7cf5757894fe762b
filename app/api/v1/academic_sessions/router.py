from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.terms import service as term_service
from app.api.v1.terms.schemas import PaginatedTermsResponse, TermCreate, TermFilterParams, TermResponse
from app.auth.dependencies import (
    get_current_user,
    optional_school_id_for_resource,
    school_id_for_scoped_operation,
)
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.core.pagination import PaginationParams
from app.db.session import get_db

from .schemas import (
    AcademicSessionCreate,
    AcademicSessionFilterParams,
    AcademicSessionResponse,
    AcademicSessionUpdate,
    AcademicSessionWithStatsResponse,
    PaginatedAcademicSessionsResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/academic-sessions", tags=["academic-sessions"])


@router.post(
    "",
    response_model=AcademicSessionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("academic_sessions", "create"))],
)
async def create_academic_session(
    payload: AcademicSessionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AcademicSessionResponse:
    """Create an academic session. System admins must pass school_id in the body."""
    school_id = school_id_for_scoped_operation(current_user, payload.school_id)
    try:
        return await service.create_academic_session(db, school_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=PaginatedAcademicSessionsResponse,
    dependencies=[Depends(check_permission("academic_sessions", "read"))],
)
async def list_academic_sessions(
    school_id: Optional[UUID] = Query(None, description="School (required for system admins)"),
    is_active: Optional[bool] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    page: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaginatedAcademicSessionsResponse:
    """List academic sessions of a school, newest first, with term counts."""
    scoped_school_id = school_id_for_scoped_operation(current_user, school_id)
    try:
        return await service.list_academic_sessions(
            db,
            scoped_school_id,
            AcademicSessionFilterParams(is_active=is_active),
            PaginationParams(limit=limit, offset=offset, page=page),
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/active",
    response_model=Optional[AcademicSessionWithStatsResponse],
    dependencies=[Depends(check_permission("academic_sessions", "read"))],
)
async def get_active_academic_session(
    school_id: Optional[UUID] = Query(None, description="School (required for system admins)"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> Optional[AcademicSessionWithStatsResponse]:
    """Get the school's active academic session, or null if none is active."""
    scoped_school_id = school_id_for_scoped_operation(current_user, school_id)
    try:
        return await service.get_active_academic_session(db, scoped_school_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/{session_id}",
    response_model=AcademicSessionWithStatsResponse,
    dependencies=[Depends(check_permission("academic_sessions", "read"))],
)
async def get_academic_session(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AcademicSessionWithStatsResponse:
    try:
        return await service.get_academic_session(db, session_id, optional_school_id_for_resource(current_user))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put(
    "/{session_id}",
    response_model=AcademicSessionResponse,
    dependencies=[Depends(check_permission("academic_sessions", "update"))],
)
async def update_academic_session(
    session_id: UUID,
    payload: AcademicSessionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AcademicSessionResponse:
    """Partial update. Send description: null to clear it."""
    try:
        return await service.update_academic_session(
            db, session_id, payload, optional_school_id_for_resource(current_user)
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete(
    "/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(check_permission("academic_sessions", "delete"))],
)
async def delete_academic_session(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> Response:
    """Delete an academic session. Fails with 409 while it still has terms."""
    try:
        await service.delete_academic_session(db, session_id, optional_school_id_for_resource(current_user))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{session_id}/activate",
    response_model=AcademicSessionResponse,
    dependencies=[Depends(check_permission("academic_sessions", "update"))],
)
async def activate_academic_session(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AcademicSessionResponse:
    """Activate this session. All other sessions of the school become inactive."""
    try:
        return await service.activate_academic_session(db, session_id, optional_school_id_for_resource(current_user))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{session_id}/deactivate",
    response_model=AcademicSessionResponse,
    dependencies=[Depends(check_permission("academic_sessions", "update"))],
)
async def deactivate_academic_session(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AcademicSessionResponse:
    """Deactivate this session; none of its terms stay current."""
    try:
        return await service.deactivate_academic_session(
            db, session_id, optional_school_id_for_resource(current_user)
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{session_id}/terms",
    response_model=TermResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("terms", "create"))],
)
async def create_session_term(
    session_id: UUID,
    payload: TermCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> TermResponse:
    """Create a term in this session. sequence is auto-assigned when omitted."""
    try:
        return await term_service.create_term(
            db, session_id, payload, optional_school_id_for_resource(current_user)
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/{session_id}/terms",
    response_model=PaginatedTermsResponse,
    dependencies=[Depends(check_permission("terms", "read"))],
)
async def list_session_terms(
    session_id: UUID,
    is_current: Optional[bool] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    page: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaginatedTermsResponse:
    """List the session's terms ordered by sequence."""
    try:
        return await term_service.list_terms(
            db,
            session_id,
            TermFilterParams(is_current=is_current),
            PaginationParams(limit=limit, offset=offset, page=page),
            optional_school_id_for_resource(current_user),
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
