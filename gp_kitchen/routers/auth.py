"""
Authentication routes and session dependencies
POST /api/auth/login       - log in, starts a session
POST /api/auth/logout      - clear the session cookie
POST /api/auth/register    - register, or upgrade the current guest
GET  /api/auth/me          - current user
POST /api/auth/password    - change password
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel

from gp_kitchen.config import settings
from gp_kitchen.models.response import ApiResponse
from gp_kitchen.services.auth_service import AccountError, get_auth_service, public_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

CSRF_HEADER = "X-CSRF-Token"
_MODIFYING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


# ── Request models ────────────────────────────────────────

class LoginRequest(BaseModel):
    username: str
    password: str


class RegisterRequest(BaseModel):
    username: str
    password: str
    confirm_password: str


class PasswordRequest(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str


# ── Sessions ──────────────────────────────────────────────

def start_session(response: Response, user_id: int) -> dict:
    """Issue a session token, set it as cookie and return it for the body"""
    token, csrf = get_auth_service().create_session_token(user_id)
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_EXPIRE_DAYS * 86400,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )
    response.headers[CSRF_HEADER] = csrf
    return {"access_token": token, "token_type": "bearer", "csrf_token": csrf}


def _session_token(request: Request) -> tuple:
    """(token, via) from the Authorization header or the session cookie"""
    authorization = request.headers.get("authorization")
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:], "bearer"
    return request.cookies.get(settings.SESSION_COOKIE_NAME), "cookie"


# ── Dependencies ──────────────────────────────────────────

async def get_optional_user(request: Request) -> Optional[dict]:
    """
    Current user or None for anonymous visitors

    Cookie sessions must echo the token's CSRF secret in the X-CSRF-Token
    header on state-changing requests; bearer sessions are exempt.
    """
    token, via = _session_token(request)
    if not token:
        return None
    svc = get_auth_service()
    payload = svc.verify_token(token)
    if payload is None:
        return None
    try:
        user_id = int(payload.sub)
    except ValueError:
        return None
    user = await svc.get_user(user_id)
    if user is None:
        return None

    if request.method in _MODIFYING_METHODS:
        if via == "cookie" and request.headers.get(CSRF_HEADER) != payload.csrf:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="CSRF check failed")
        await svc.touch_last_active(user_id)

    current = public_user(user)
    current["csrf_token"] = payload.csrf
    return current


async def get_current_user(user: Optional[dict] = Depends(get_optional_user)) -> dict:
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not logged in")
    return user


async def ensure_user(response: Response, user: Optional[dict]) -> dict:
    """Current user, or a new guest account with a session for anonymous visitors"""
    if user is not None:
        return user
    svc = get_auth_service()
    user_id = await svc.create_guest_user()
    session = start_session(response, user_id)
    current = public_user(await svc.get_user(user_id))
    current["csrf_token"] = session["csrf_token"]
    return current


async def require_admin(current_user: dict = Depends(get_current_user)) -> dict:
    if not current_user.get("is_admin"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


# ── Routes ────────────────────────────────────────────────

@router.post("/login", response_model=ApiResponse)
async def login(body: LoginRequest, response: Response):
    svc = get_auth_service()
    user = await svc.authenticate(body.username, body.password)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid username or password")
    await svc.touch_last_active(user["_id"])
    session = start_session(response, user["_id"])
    logger.info(f"user {user['username']} logged in")
    return ApiResponse.ok(data={**session, "user": public_user(user)}, message="Logged in")


@router.post("/logout", response_model=ApiResponse)
async def logout(response: Response):
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return ApiResponse.ok(message="Logged out")


@router.post("/register", response_model=ApiResponse)
async def register(
    body: RegisterRequest,
    response: Response,
    current_user: Optional[dict] = Depends(get_optional_user),
):
    """Register a new account; a guest keeps its recipes"""
    svc = get_auth_service()
    try:
        svc.validate_registration(body.username, body.password, body.confirm_password)
    except AccountError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    try:
        if current_user and current_user["is_guest"]:
            await svc.register_guest(current_user["id"], body.username, body.password)
            user_id = current_user["id"]
        else:
            user_id = await svc.register(body.username, body.password)
    except AccountError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    session = start_session(response, user_id)
    user = public_user(await svc.get_user(user_id))
    return ApiResponse.ok(data={**session, "user": user}, message="Account created")


@router.get("/me", response_model=ApiResponse)
async def me(current_user: dict = Depends(get_current_user)):
    return ApiResponse.ok(data=current_user)


@router.post("/password", response_model=ApiResponse)
async def change_password(body: PasswordRequest, current_user: dict = Depends(get_current_user)):
    if body.new_password != body.confirm_password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Passwords do not match")
    try:
        await get_auth_service().update_password(
            current_user["id"], body.current_password, body.new_password
        )
    except AccountError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return ApiResponse.ok(message="Password updated")
