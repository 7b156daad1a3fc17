import hmac
import secrets
from jose import JWTError, jwt
from datetime import datetime, timedelta
from app.core.config import settings

# jti of admin tokens that were logged out
_revoked_admin_tokens = set()

# ✅ Create JWT access token for an identity-provider user
def create_access_token(data: dict):
    to_encode = data.copy()
    expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt

# ✅ Decode and verify a token, raises JWTError when invalid or expired
def decode_access_token(token: str) -> dict:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def check_admin_credentials(admin_id: str, admin_password: str) -> bool:
    if not settings.ADMIN_ID or not settings.ADMIN_PASSWORD:
        return False
    return (
        hmac.compare_digest(admin_id.encode(), settings.ADMIN_ID.encode())
        and hmac.compare_digest(admin_password.encode(), settings.ADMIN_PASSWORD.encode())
    )


# ✅ Admin sessions are short-lived tokens with the admin role
def create_admin_token(admin_id: str):
    expire = datetime.utcnow() + timedelta(minutes=settings.ADMIN_TOKEN_EXPIRE_MINUTES)
    payload = {"sub": admin_id, "role": "admin", "jti": secrets.token_hex(16), "exp": expire}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM), expire


def decode_admin_token(token: str) -> dict:
    payload = decode_access_token(token)
    if payload.get("role") != "admin" or payload.get("jti") in _revoked_admin_tokens:
        raise JWTError("Invalid or expired admin session")
    return payload


def revoke_admin_token(token: str) -> None:
    try:
        payload = decode_access_token(token)
    except JWTError:
        return
    if payload.get("jti"):
        _revoked_admin_tokens.add(payload["jti"])
