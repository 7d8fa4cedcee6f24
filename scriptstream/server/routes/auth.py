"""
MODULE OVERVIEW:
Login, token refresh, logout and profile for the development server.

WHAT IS HAPPENING HERE:
`/auth/refresh` is the endpoint the client's TokenRefreshCoordinator talks to. It
rotates: the presented refresh token is consumed and a brand new pair comes back,
so replaying an old refresh token answers 401 just like the hosted backend.
"""
from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel

from scriptstream.server.store import backend
from scriptstream.shared.client_utils import mask_token
from scriptstream.shared.models import AuthUser
from scriptstream.shared.route_utils import current_user, envelope

router = APIRouter(prefix="/auth")


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


@router.post("/login")
async def login(body: LoginRequest):
    user = backend.authenticate(body.email, body.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    access, refresh = backend.issue_pair(user)
    logger.info(f"event=login user_id={user.id} token={mask_token(access)}")
    return envelope({"access_token": access, "refresh_token": refresh, "user": user.model_dump()})


@router.post("/refresh")
async def refresh(body: RefreshRequest):
    rotated = backend.rotate(body.refresh_token)
    if rotated is None:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    user, access, new_refresh = rotated
    logger.info(f"event=refresh user_id={user.id} token={mask_token(access)}")
    return {"access_token": access, "refresh_token": new_refresh, "user": user.model_dump()}


@router.post("/logout")
async def logout(body: RefreshRequest):
    backend.revoke(body.refresh_token)
    return envelope({"message": "Logged out"})


@router.get("/profile")
async def profile(user: AuthUser = Depends(current_user)):
    return envelope(user.model_dump())
