"""
api/routes/v1/auth.py -- Login, registration and identity query endpoints.

Routes:
  POST /api/v1/auth/login               -- credentials + app_id -> signed token
  POST /api/v1/auth/register            -- email + password -> new user id
  GET  /api/v1/users/{user_id}/is-admin -- admin flag for a user
  GET  /api/v1/users/{user_id}/exists   -- whether a user id is on file

Every handler runs its service call under the configured request deadline
(Settings.request_timeout). On expiry asyncio.timeout cancels the in-flight
call and raises TimeoutError, which api/main.py turns into 504.

Service errors (auth/errors.py) are not caught here; the exception handlers
in api/main.py map them to status codes in one place.

Security:
  Login returns the same 401 for unknown email and wrong password.
  Cache-Control: no-store on login responses so tokens are not cached.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Path, Request, status
from fastapi.responses import JSONResponse

from api.models import (
    IsAdminResponse,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    RegisterResponse,
    UserExistsResponse,
)
from auth.service import AuthService

router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _deadline(request: Request) -> float:
    return request.app.state.settings.request_timeout.total_seconds()


@router.post("/auth/login", response_model=LoginResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a token for app_id."""
    async with asyncio.timeout(_deadline(request)):
        token = await _service(request).login(body.email, body.password, body.app_id)
    resp = JSONResponse(status_code=200, content=LoginResponse(token=token).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    async with asyncio.timeout(_deadline(request)):
        user_id = await _service(request).register_new_user(body.email, body.password)
    return RegisterResponse(user_id=user_id)


@router.get("/users/{user_id}/is-admin", response_model=IsAdminResponse)
async def is_admin(request: Request, user_id: int = Path(..., gt=0)) -> IsAdminResponse:
    async with asyncio.timeout(_deadline(request)):
        result = await _service(request).is_admin(user_id)
    return IsAdminResponse(is_admin=result)


@router.get("/users/{user_id}/exists", response_model=UserExistsResponse)
async def user_exists(request: Request, user_id: int = Path(..., gt=0)) -> UserExistsResponse:
    async with asyncio.timeout(_deadline(request)):
        result = await _service(request).is_user_exists(user_id)
    return UserExistsResponse(exists=result)
