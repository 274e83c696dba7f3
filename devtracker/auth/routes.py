"""Session login/logout (JSON)."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..config import settings
from ..database.base import get_db
from ..rate_limit import limiter
from .schemas import LoginRequest, UserResponse
from .service import authenticate_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login")
@limiter.limit(settings.rate_limit_login)
def login(request: Request, body: LoginRequest, db: Session = Depends(get_db)):
    user = authenticate_user(db, body.email, body.password)
    if not user:
        logger.warning("Failed login for %s", body.email)
        return JSONResponse({"success": False, "error": "Invalid credentials"}, status_code=401)
    request.session["user_id"] = str(user.id)
    logger.info("User %s logged in", user.email)
    return {
        "success": True,
        "user": UserResponse(id=str(user.id), email=user.email, name=user.name).model_dump(),
    }


@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return {"success": True}
