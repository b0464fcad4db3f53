from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from pydantic import ValidationError
from sqlalchemy.orm import Session

from shared.events import publish

from .. import catalog, repository
from ..db import get_db
from ..deps import admin_claims
from ..envelope import ok, product_out
from ..errors import NotFound, ValidationFailed, pydantic_errors
from ..schemas import PaginationOut, ProductCreate, ProductListParams, ProductUpdate

router = APIRouter(tags=["products"])


def _read_image(image: UploadFile | None) -> catalog.ImageUpload | None:
    if image is None or not image.filename:
        return None
    return catalog.ImageUpload(
        filename=image.filename,
        content_type=image.content_type or "",
        data=image.file.read(),
    )


def _provided(**fields) -> dict:
    return {k: v for k, v in fields.items() if v is not None}


def _validate(model, raw: dict, image: catalog.ImageUpload | None, image_required: bool):
    """Validate form fields and the upload together so every problem is reported at once."""
    errors = {}
    parsed = None
    try:
        parsed = model(**raw)
    except ValidationError as e:
        errors.update(pydantic_errors(e))

    if image is None:
        if image_required:
            errors.setdefault("image", []).append("The image field is required.")
    else:
        problems = catalog.check_image(image)
        if problems:
            errors.setdefault("image", []).extend(problems)

    if errors:
        raise ValidationFailed(errors)
    return parsed


def _event_payload(p) -> dict:
    return {"id": p.id, "name": p.name, "price": str(p.price), "is_active": p.is_active}


@router.get("/products")
def list_products(request: Request, db: Session = Depends(get_db)):
    try:
        criteria, echo = ProductListParams.from_query(request.query_params)
    except ValidationError as e:
        raise ValidationFailed(pydantic_errors(e))

    page = repository.list_active_filtered(db, criteria)
    pagination = PaginationOut(
        current_page=page.page,
        last_page=page.last_page,
        per_page=page.per_page,
        total=page.total,
        from_=page.first_item,
        to=page.last_item,
    )
    return ok(
        [product_out(p) for p in page.items],
        pagination=pagination.model_dump(by_alias=True),
        filters=echo,
    )


@router.get("/products/{product_id}")
def get_product(product_id: int, db: Session = Depends(get_db)):
    product = repository.find_active_with_active_categories(db, product_id)
    if product is None:
        raise NotFound("Product not found")
    return ok(product_out(product))


@router.post("/products", status_code=201)
def create_product(
    name: str | None = Form(None),
    description: str | None = Form(None),
    price: str | None = Form(None),
    stock: str | None = Form(None),
    categories: list[str] | None = Form(None),
    image: UploadFile | None = File(None),
    claims: dict = Depends(admin_claims),
    db: Session = Depends(get_db),
):
    upload = _read_image(image)
    data = _validate(
        ProductCreate,
        _provided(name=name, description=description, price=price, stock=stock, categories=categories),
        upload,
        image_required=True,
    )

    product = catalog.create_product(db, data, upload, claims)
    publish("product.created", _event_payload(product), safe=True)
    return ok(product_out(product), "Product created successfully", status_code=201)


@router.put("/products/{product_id}")
def update_product(
    product_id: int,
    name: str | None = Form(None),
    description: str | None = Form(None),
    price: str | None = Form(None),
    stock: str | None = Form(None),
    is_active: str | None = Form(None),
    categories: list[str] | None = Form(None),
    image: UploadFile | None = File(None),
    claims: dict = Depends(admin_claims),
    db: Session = Depends(get_db),
):
    if repository.find_product(db, product_id) is None:
        raise NotFound("Product not found")

    upload = _read_image(image)
    data = _validate(
        ProductUpdate,
        _provided(
            name=name, description=description, price=price, stock=stock,
            is_active=is_active, categories=categories,
        ),
        upload,
        image_required=False,
    )

    product = catalog.update_product(db, product_id, data, upload, claims)
    publish("product.updated", _event_payload(product), safe=True)
    return ok(product_out(product), "Product updated successfully")


@router.delete("/products/{product_id}")
def delete_product(
    product_id: int,
    hard: bool = Query(False),
    claims: dict = Depends(admin_claims),
    db: Session = Depends(get_db),
):
    if hard:
        catalog.hard_delete_product(db, product_id, claims)
    else:
        catalog.soft_delete_product(db, product_id, claims)
    publish("product.deleted", {"id": product_id, "hard": hard}, safe=True)
    return ok(message="Product deleted successfully")


@router.post("/products/{product_id}/reactivate")
def reactivate_product(product_id: int, claims: dict = Depends(admin_claims), db: Session = Depends(get_db)):
    product = catalog.reactivate_product(db, product_id, claims)
    publish("product.reactivated", _event_payload(product), safe=True)
    return ok(product_out(product), "Product reactivated successfully")
