import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, Response
from fastapi.security import APIKeyHeader, OAuth2PasswordBearer
from jose import JWTError

from app.client.client import StoreClient
from app.core.config import settings
from app.core.security import decode_access_token, decode_admin_token
from app.crud import user as crud_user

# One client per process, connects on first use
db_client = StoreClient()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)
admin_token_header = APIKeyHeader(name="X-Admin-Token", auto_error=False)


@dataclass
class RequestContext:
    user_id: Optional[int]
    session_id: str
    user: Optional[dict] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


# Dependency to get the database client
def get_db():
    yield db_client


def get_session_id(request: Request, response: Response) -> str:
    session_id = request.headers.get(settings.GUEST_SESSION_HEADER) or request.cookies.get(settings.GUEST_SESSION_COOKIE)
    if not session_id:
        session_id = secrets.token_hex(32)
        response.set_cookie(
            settings.GUEST_SESSION_COOKIE,
            session_id,
            max_age=settings.GUEST_SESSION_MAX_AGE,
            httponly=True,
            samesite="lax",
            secure=settings.ENVIRONMENT == "production",
        )
    return session_id


# Dependency resolving the signed-in user (if any) and the guest session
def get_context(
    session_id: str = Depends(get_session_id),
    token: Optional[str] = Depends(oauth2_scheme),
    db: StoreClient = Depends(get_db),
) -> RequestContext:
    if not token:
        return RequestContext(user_id=None, session_id=session_id)

    try:
        payload = decode_access_token(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

    subject = payload.get("sub")
    email = payload.get("email")
    if subject is None or email is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = crud_user.upsert_identity(db, subject, email, payload.get("name"))
    return RequestContext(user_id=user["user_id"], session_id=session_id, user=user)


def require_user(context: RequestContext = Depends(get_context)) -> RequestContext:
    if not context.is_authenticated:
        raise HTTPException(status_code=401, detail="Authentication required")
    return context


# Admin routes accept the admin token as a bearer token or in X-Admin-Token
def get_admin_token(
    token: Optional[str] = Depends(oauth2_scheme),
    admin_token: Optional[str] = Depends(admin_token_header),
) -> Optional[str]:
    return token or admin_token


def require_admin(token: Optional[str] = Depends(get_admin_token)) -> dict:
    if not token:
        raise HTTPException(status_code=401, detail="Admin authentication required")
    try:
        return decode_admin_token(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired admin session")
