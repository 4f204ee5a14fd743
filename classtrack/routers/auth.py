from fastapi import APIRouter, Depends, HTTPException, status
from starlette.concurrency import run_in_threadpool

from classtrack.core.config import ACCESS_TOKEN_EXPIRE
from classtrack.core.current_user import get_current_user
from classtrack.core.deps import get_ledger_store
from classtrack.core.security import (
    create_access_token,
    hash_password,
    verify_password,
    verify_professor_code,
)
from classtrack.ledger.store import LedgerStore
from classtrack.schemas.auth import LoginRequest
from classtrack.schemas.token import Token
from classtrack.schemas.user import UserCreate, UserInDB, UserRead

router = APIRouter()

# bcrypt runs in the threadpool, never on the event loop


@router.post(
    "/register",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Username already taken or invalid professor verification code"},
    },
)
async def register(payload: UserCreate, store: LedgerStore = Depends(get_ledger_store)):
    is_professor = verify_professor_code(payload.professor_code)
    if payload.role == "instructor" and not is_professor:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid professor verification code",
        )

    if await store.get_user_by_username(payload.username):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username already taken",
        )

    hashed_password = await run_in_threadpool(hash_password, payload.password)
    return await store.create_user(
        username=payload.username,
        email=payload.email,
        name=payload.name,
        hashed_password=hashed_password,
        role="instructor" if is_professor else "student",
    )


@router.post(
    "/login",
    response_model=Token,
    responses={
        401: {"description": "Invalid username or password"},
    },
)
async def login(payload: LoginRequest, store: LedgerStore = Depends(get_ledger_store)):
    user = await store.get_user_by_username(payload.username)
    if not user or not await run_in_threadpool(
        verify_password, payload.password, user.hashed_password
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    access_token = create_access_token(
        data={"sub": str(user.id), "role": user.role},
        expires_delta=ACCESS_TOKEN_EXPIRE,
    )

    return {
        "access_token": access_token,
        "token_type": "bearer",
    }


@router.get("/me", response_model=UserRead)
async def me(current_user: UserInDB = Depends(get_current_user)):
    return current_user
