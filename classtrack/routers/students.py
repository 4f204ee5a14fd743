from fastapi import APIRouter, Depends, HTTPException, Query, status

from classtrack.core.current_user import get_current_user
from classtrack.core.deps import get_ledger_store, get_point_coordinator
from classtrack.core.permissions import require_instructor
from classtrack.ledger.store import LedgerStore
from classtrack.schemas.participation_record import (
    ParticipationRecordWithStudent,
    StudentPoints,
)
from classtrack.schemas.user import StudentProfile, UserInDB
from classtrack.services.point_awards import PointAwardCoordinator

router = APIRouter()


@router.get("", response_model=list[StudentProfile])
async def list_students(
    _: UserInDB = Depends(get_current_user),
    store: LedgerStore = Depends(get_ledger_store),
):
    return await store.list_students()


@router.get(
    "/{student_id}/participation-records",
    response_model=list[ParticipationRecordWithStudent],
    responses={404: {"description": "Student not found"}},
)
async def student_records(
    student_id: int,
    show_hidden: bool = Query(False, alias="showHidden"),
    _: UserInDB = Depends(require_instructor),
    awards: PointAwardCoordinator = Depends(get_point_coordinator),
):
    return await awards.records_for_student(student_id, show_hidden=show_hidden)


@router.get(
    "/{student_id}/participation-points",
    response_model=StudentPoints,
    responses={403: {"description": "Students can only view their own points"}},
)
async def student_points(
    student_id: int,
    me: UserInDB = Depends(get_current_user),
    awards: PointAwardCoordinator = Depends(get_point_coordinator),
):
    if me.role == "student" and me.id != student_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to view other student's points",
        )
    return StudentPoints(student_id=student_id, points=await awards.total_points(student_id))
