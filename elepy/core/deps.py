from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from elepy.core.config import settings
from elepy.core.security import decode_jwt, granted_permissions, parse_basic_credentials
from elepy.db.session import get_db
from elepy.services.users import authenticate, claims_for

bearer = HTTPBearer(auto_error=False)


def _basic_user(request: Request, db: Session) -> dict | None:
    scheme, _, encoded = str(request.headers.get("Authorization") or "").partition(" ")
    if scheme.lower() != "basic":
        return None
    credentials = parse_basic_credentials(encoded.strip())
    if credentials is None:
        raise HTTPException(status_code=401, detail="Malformed basic credentials")
    user = authenticate(db, *credentials)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return claims_for(user)


def get_optional_user(
    request: Request,
    creds: HTTPAuthorizationCredentials = Depends(bearer),
    db: Session = Depends(get_db),
) -> dict | None:
    if creds:
        try:
            return decode_jwt(creds.credentials, settings.JWT_SECRET)
        except Exception:
            raise HTTPException(status_code=401, detail="Invalid token")
    return _basic_user(request, db)


def get_current_user(user: dict | None = Depends(get_optional_user)) -> dict:
    if not user:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def require_permissions(*permissions: str):
    required = tuple(p for p in permissions if p)
    if not required:
        def _public() -> None:
            return None
        return _public

    def _inner(user: dict = Depends(get_current_user)) -> dict:
        missing = set(required) - granted_permissions(user)
        if missing:
            raise HTTPException(status_code=403, detail="Missing permissions: " + ", ".join(sorted(missing)))
        return user
    return _inner
