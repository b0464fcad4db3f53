import os

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from shared.events import publish

from .. import catalog
from ..db import get_db
from ..deps import admin_claims, current_claims, json_body
from ..envelope import ok, product_out
from ..models import ProductRequest
from ..schemas import ProductRequestCreate, ProductRequestOut, ProductRequestStatusUpdate

ENABLE_PRODUCT_REQUESTS = os.getenv("ENABLE_PRODUCT_REQUESTS", "false").lower() == "true"

router = APIRouter(tags=["product-requests"])


def _out(r: ProductRequest, with_product: bool = False) -> dict:
    data = ProductRequestOut.model_validate(r).model_dump(mode="json")
    if with_product:
        data["product"] = product_out(r.product) if r.product else None
    return data


@router.post("/product-requests", status_code=201)
def submit_request(
    payload: ProductRequestCreate = Depends(json_body(ProductRequestCreate, gate=current_claims)),
    claims: dict = Depends(current_claims),
    db: Session = Depends(get_db),
):
    request = catalog.submit_product_request(db, int(claims["sub"]), payload)
    publish(
        "product_request.created",
        {"id": request.id, "product_id": request.product_id, "quantity": request.quantity},
        safe=True,
    )
    return ok(_out(request), "Product request submitted successfully", status_code=201)


@router.get("/my-product-requests")
def my_requests(claims: dict = Depends(current_claims), db: Session = Depends(get_db)):
    rows = (
        db.query(ProductRequest)
        .filter(ProductRequest.user_id == int(claims["sub"]))
        .order_by(ProductRequest.id.desc())
        .all()
    )
    return ok([_out(r, with_product=True) for r in rows])


@router.get("/product-requests")
def list_requests(claims: dict = Depends(admin_claims), db: Session = Depends(get_db)):
    rows = db.query(ProductRequest).order_by(ProductRequest.id.desc()).all()
    return ok([_out(r, with_product=True) for r in rows])


@router.put("/product-requests/{request_id}/status")
def update_status(
    request_id: int,
    payload: ProductRequestStatusUpdate = Depends(json_body(ProductRequestStatusUpdate)),
    claims: dict = Depends(admin_claims),
    db: Session = Depends(get_db),
):
    request = catalog.update_product_request_status(db, request_id, payload, claims)
    publish("product_request.status_changed", {"id": request.id, "status": request.status}, safe=True)
    return ok(_out(request), "Product request status updated successfully")
