from fastapi import APIRouter, Depends, Query, status

from classtrack.core.current_user import get_current_user
from classtrack.core.deps import get_point_coordinator
from classtrack.core.permissions import require_instructor
from classtrack.schemas.participation_record import (
    ParticipationRecordCreate,
    ParticipationRecordRead,
    ParticipationRecordVisibilityUpdate,
    ParticipationRecordWithStudent,
    RecordsDeleted,
)
from classtrack.schemas.user import UserInDB
from classtrack.services.point_awards import PointAwardCoordinator

router = APIRouter()


@router.post(
    "",
    response_model=ParticipationRecordRead,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid student ID or points"},
        403: {"description": "Instructor role required"},
    },
)
async def award_points(
    payload: ParticipationRecordCreate,
    _: UserInDB = Depends(require_instructor),
    awards: PointAwardCoordinator = Depends(get_point_coordinator),
):
    return await awards.award_points(
        student_id=payload.student_id,
        points=payload.points,
        feedback=payload.feedback,
        note=payload.note,
        linked_request_id=payload.linked_request_id,
    )


@router.get("", response_model=list[ParticipationRecordWithStudent])
async def list_records(
    show_hidden: bool = Query(False, alias="showHidden"),
    me: UserInDB = Depends(get_current_user),
    awards: PointAwardCoordinator = Depends(get_point_coordinator),
):
    return await awards.list_records(me, show_hidden=show_hidden)


@router.delete("/today", response_model=RecordsDeleted)
async def delete_todays_records(
    _: UserInDB = Depends(require_instructor),
    awards: PointAwardCoordinator = Depends(get_point_coordinator),
):
    count, day_start = await awards.delete_records_for_day()
    return RecordsDeleted(
        count=count,
        date=day_start.isoformat(),
        message=f"Deleted {count} participation records from today",
    )


@router.patch(
    "/{record_id}",
    response_model=ParticipationRecordRead,
    responses={404: {"description": "Participation record not found"}},
)
async def set_record_visibility(
    record_id: int,
    payload: ParticipationRecordVisibilityUpdate,
    _: UserInDB = Depends(require_instructor),
    awards: PointAwardCoordinator = Depends(get_point_coordinator),
):
    return await awards.set_visibility(record_id, payload.hidden)
