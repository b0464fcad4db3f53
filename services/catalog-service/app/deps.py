from fastapi import Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from shared.security import require_user, is_admin

from .db import get_db
from .errors import Unauthorized, ValidationFailed, pydantic_errors
from .models import RevokedToken


def current_claims(claims: dict = Depends(require_user), db: Session = Depends(get_db)) -> dict:
    jti = claims.get("jti")
    if jti and db.query(RevokedToken.id).filter(RevokedToken.jti == jti).first():
        raise HTTPException(status_code=401, detail="Token revoked")
    return claims


def admin_claims(claims: dict = Depends(current_claims)) -> dict:
    """Authorization gate for every mutating catalog route; runs before body validation."""
    if not is_admin(claims):
        raise Unauthorized("Unauthorized")
    return claims


def json_body(model, gate=admin_claims):
    """
    Dependency parsing a JSON body into `model` only after `gate` has passed.

    Declaring the model as a plain body parameter would let FastAPI parse and
    reject the body before any dependency runs.
    """

    async def _parse(request: Request, claims: dict = Depends(gate)):
        try:
            raw = await request.json()
        except ValueError:
            raise ValidationFailed({"body": ["The request body must be valid JSON."]})
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            raise ValidationFailed(pydantic_errors(e))

    return _parse
