from fastapi import APIRouter, Depends, status

from classtrack.core.current_user import get_current_user
from classtrack.core.deps import get_lifecycle_manager
from classtrack.core.permissions import require_student
from classtrack.schemas.participation_request import (
    ParticipationRequestCreate,
    ParticipationRequestRead,
    ParticipationRequestWithStudent,
)
from classtrack.schemas.user import UserInDB
from classtrack.services.request_lifecycle import RequestLifecycleManager

router = APIRouter()


@router.post(
    "",
    response_model=ParticipationRequestRead,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Student already has an active participation request"},
        403: {"description": "Only students can raise hands"},
    },
)
async def raise_hand(
    payload: ParticipationRequestCreate,
    me: UserInDB = Depends(require_student),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle_manager),
):
    return await lifecycle.open_request(me.id, payload.note)


@router.get("", response_model=list[ParticipationRequestWithStudent])
async def open_requests(
    _: UserInDB = Depends(get_current_user),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle_manager),
):
    """The live queue: open requests, first raised first."""
    return await lifecycle.list_open_requests()


@router.delete(
    "/{request_id}",
    response_model=ParticipationRequestRead,
    responses={
        403: {"description": "Students may only lower their own hand"},
        404: {"description": "Participation request not found"},
    },
)
async def lower_hand(
    request_id: int,
    me: UserInDB = Depends(get_current_user),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle_manager),
):
    return await lifecycle.close_request(request_id, actor_id=me.id, actor_role=me.role)
