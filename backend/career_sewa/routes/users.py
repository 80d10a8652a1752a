"""
Career Sewa API — User Route Handlers
=======================================

What:  POST /api/users, GET /api/users, GET /api/users/{user_id}.
How:   Validates input with Pydantic, delegates to UserService, wraps the
       result in the response envelope.

The user id is taken as a plain string so that a malformed id goes
through the service's cast-error translation (400) rather than FastAPI's
path validation (422).
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from career_sewa.database import get_db_session
from career_sewa.schemas.response import APIResponse
from career_sewa.schemas.user import UserCreate
from career_sewa.services.user_service import user_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])


@router.post("", status_code=201, summary="Register a user")
async def create_user(
    payload: UserCreate,
    db: AsyncSession = Depends(get_db_session),
) -> JSONResponse:
    """
    Create a user account.

    Errors:
        409 when the email is already registered.
        422 when any field fails validation (all messages are joined).
    """
    user = await user_service.create_user(db, payload)
    return APIResponse.created(
        user.model_dump(mode="json"), "User created successfully"
    ).to_response()


@router.get("", summary="List active users")
async def list_users(db: AsyncSession = Depends(get_db_session)) -> JSONResponse:
    result = await user_service.list_active_users(db)
    return APIResponse.ok(
        result.model_dump(mode="json"),
        "Users retrieved successfully",
    ).to_response(headers={"X-Total-Count": str(result.total_count)})


@router.get("/{user_id}", summary="Get a user by id")
async def get_user(user_id: str, db: AsyncSession = Depends(get_db_session)) -> JSONResponse:
    user = await user_service.get_user(db, user_id)
    return APIResponse.ok(user.model_dump(mode="json"), "User retrieved successfully").to_response()
