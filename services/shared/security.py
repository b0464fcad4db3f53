import os
import time
import uuid
from fastapi import Header, HTTPException
from jose import jwt, JWTError, ExpiredSignatureError

JWT_SECRET = os.getenv("JWT_SECRET")
if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET is not set")
ALGO = "HS256"

# Optional future-proofing
JWT_ISSUER = os.getenv("JWT_ISSUER")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE")

ACCESS_TOKEN_TTL_SECONDS = int(os.getenv("ACCESS_TOKEN_TTL_SECONDS", "3600"))


def create_access_token(user_id: int, email: str, is_admin: bool, ttl_seconds: int = ACCESS_TOKEN_TTL_SECONDS) -> str:
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "email": email,
        "is_admin": bool(is_admin),
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + ttl_seconds,
    }
    if JWT_ISSUER:
        payload["iss"] = JWT_ISSUER
    if JWT_AUDIENCE:
        payload["aud"] = JWT_AUDIENCE

    return jwt.encode(payload, JWT_SECRET, algorithm=ALGO)


def decode_token(token: str) -> dict:
    """Verify signature, expiry and (when configured) issuer/audience."""
    try:
        return jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[ALGO],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
            options={"verify_aud": bool(JWT_AUDIENCE)},
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def _bearer(authorization: str | None) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return token.strip()


def require_user(authorization: str | None = Header(default=None)) -> dict:
    claims = decode_token(_bearer(authorization))
    if not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    return claims


def is_admin(claims: dict) -> bool:
    return claims.get("is_admin") is True
