from fastapi import Depends, HTTPException, status

from classtrack.core.current_user import get_current_user
from classtrack.schemas.user import UserInDB


def require_instructor(current_user: UserInDB = Depends(get_current_user)) -> UserInDB:
    if current_user.role != "instructor":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Instructor role required",
        )
    return current_user


def require_student(current_user: UserInDB = Depends(get_current_user)) -> UserInDB:
    if current_user.role != "student":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only students can raise hands",
        )
    return current_user
