from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from elepy.core.config import settings
from elepy.core.deps import get_current_user
from elepy.core.security import create_jwt
from elepy.db.session import get_db
from elepy.schemas.auth import LoginIn, MeOut, TokenOut
from elepy.services.users import authenticate, claims_for

router = APIRouter()


@router.post("/login", response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = authenticate(db, payload.username, payload.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid username or password")
    token = create_jwt(
        claims_for(user),
        settings.JWT_SECRET,
        timedelta(minutes=settings.JWT_TTL_MINUTES),
    )
    return TokenOut(access_token=token)


@router.get("/me", response_model=MeOut)
def me(user: dict = Depends(get_current_user)):
    return MeOut(
        sub=str(user.get("sub") or ""),
        username=str(user.get("username") or ""),
        permissions=[str(p) for p in user.get("permissions") or []],
    )
