import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shared.security import ACCESS_TOKEN_TTL_SECONDS, create_access_token

from ..db import get_db
from ..deps import current_claims
from ..envelope import ok
from ..errors import TransactionFailure
from ..models import RevokedToken, User
from ..passwords import verify_password
from ..schemas import LoginIn, TokenOut

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


@router.post("/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == payload.email.lower()).first()
    if not user or not verify_password(payload.password, user.password_hash):
        logger.info("Login failed email=%s", payload.email)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = create_access_token(user.id, user.email, user.is_admin)
    out = TokenOut(access_token=token, expires_in=ACCESS_TOKEN_TTL_SECONDS, is_admin=user.is_admin)
    return ok(out.model_dump(), "Login successful")


@router.post("/logout")
def logout(claims: dict = Depends(current_claims), db: Session = Depends(get_db)):
    jti = claims.get("jti")
    if jti:
        try:
            db.add(RevokedToken(jti=jti))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise TransactionFailure("Failed to logout") from e
    return ok(message="Logged out successfully")
