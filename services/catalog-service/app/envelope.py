from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .models import Product
from .schemas import CategoryOut, ProductOut


def ok(data: Any = None, message: str | None = None, status_code: int = 200, **extra) -> JSONResponse:
    body: dict = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def fail(message: str, status_code: int, errors: dict | None = None) -> JSONResponse:
    body: dict = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def product_out(p: Product) -> dict:
    out = ProductOut.model_validate(p)
    out.categories = [c for c in out.categories if c.is_active]
    return out.model_dump(mode="json")


def category_out(c) -> dict:
    return CategoryOut.model_validate(c).model_dump(mode="json")
