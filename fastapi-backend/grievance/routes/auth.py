"""Student sign-in routes: OTP request/confirm, current identity, logout."""

from typing import Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from .. import auth
from ..database import get_session
from ..dependencies import get_services
from ..models import Identity
from ..otp_utils import confirm_access, request_access

router = APIRouter(tags=["auth"])


class LoginRequest(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None


class VerifyOtpRequest(BaseModel):
    email: Optional[str] = None
    otp: Optional[str] = None


@router.post("/login")
@router.post("/send-otp")
@router.post("/register")
async def login(
    payload: LoginRequest,
    response: Response,
    session=Depends(get_session),
    services=Depends(get_services),
):
    result = await request_access(session, services.mailer, payload.email, payload.name)
    if result.logged_in:
        auth.set_session_cookie(response, result.email)
        return {"message": "Login successful", "email": result.email, "otp_required": False}
    return {"message": "OTP sent successfully", "email": result.email, "otp_required": True}


@router.post("/verify-otp")
async def verify_otp(payload: VerifyOtpRequest, response: Response, session=Depends(get_session)):
    identity = await confirm_access(session, payload.email, payload.otp)
    auth.set_session_cookie(response, identity.email)
    return {"message": "Login successful", "email": identity.email}


@router.get("/me")
async def me(identity: Identity = Depends(auth.get_current_identity)):
    return {"email": identity.email, "name": identity.name}


@router.post("/logout")
async def logout(response: Response):
    auth.clear_session_cookie(response)
    return {"message": "Logged out successfully"}
