import os

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from shared.events import publish

from .. import catalog, repository
from ..db import get_db
from ..deps import admin_claims, json_body
from ..envelope import category_out, ok, product_out
from ..errors import NotFound
from ..schemas import BulkActivateIn, CategoryCreate, CategoryUpdate, CategoryWithCountOut

ENABLE_CATEGORY_ADMIN_ROUTES = os.getenv("ENABLE_CATEGORY_ADMIN_ROUTES", "false").lower() == "true"

router = APIRouter(tags=["categories"])

# Show/update/reactivate/bulk/inactive; mounted only when explicitly enabled
admin_router = APIRouter(tags=["categories"])


def _event_payload(c) -> dict:
    return {"id": c.id, "name": c.name, "is_active": c.is_active}


@router.get("/categories")
def list_categories(db: Session = Depends(get_db)):
    data = []
    for category, count in repository.list_active_categories_with_counts(db):
        out = CategoryWithCountOut.model_validate(category)
        out.products_count = count
        data.append(out.model_dump(mode="json"))
    return ok(data)


@router.post("/categories", status_code=201)
def create_category(
    payload: CategoryCreate = Depends(json_body(CategoryCreate)),
    claims: dict = Depends(admin_claims),
    db: Session = Depends(get_db),
):
    category, created = catalog.create_or_reactivate_category(db, payload, claims)
    if created:
        publish("category.created", _event_payload(category), safe=True)
        return ok(category_out(category), "Category created successfully", status_code=201)

    publish("category.reactivated", _event_payload(category), safe=True)
    return ok(category_out(category), "Category reactivated successfully", status_code=200)


@router.delete("/categories/{category_id}")
def delete_category(category_id: int, claims: dict = Depends(admin_claims), db: Session = Depends(get_db)):
    category = catalog.soft_delete_category(db, category_id, claims)
    publish("category.deleted", _event_payload(category), safe=True)
    return ok(message="Category deleted successfully")


@admin_router.get("/categories/inactive")
def list_inactive_categories(claims: dict = Depends(admin_claims), db: Session = Depends(get_db)):
    return ok([category_out(c) for c in repository.list_inactive_categories(db)])


@admin_router.post("/categories/bulk-activate")
def bulk_activate(
    payload: BulkActivateIn = Depends(json_body(BulkActivateIn)),
    claims: dict = Depends(admin_claims),
    db: Session = Depends(get_db),
):
    activated = catalog.bulk_activate_categories(db, payload.ids, claims)
    for category in activated:
        publish("category.reactivated", _event_payload(category), safe=True)
    return ok(
        [category_out(c) for c in activated],
        f"{len(activated)} categories activated",
    )


@admin_router.get("/categories/{category_id}")
def get_category(category_id: int, db: Session = Depends(get_db)):
    found = repository.find_active_category_with_products(db, category_id)
    if found is None:
        raise NotFound("Category not found")
    category, products = found
    data = category_out(category)
    data["products"] = [product_out(p) for p in products]
    return ok(data)


@admin_router.put("/categories/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryUpdate = Depends(json_body(CategoryUpdate)),
    claims: dict = Depends(admin_claims),
    db: Session = Depends(get_db),
):
    category = catalog.update_category(db, category_id, payload, claims)
    publish("category.updated", _event_payload(category), safe=True)
    return ok(category_out(category), "Category updated successfully")


@admin_router.post("/categories/{category_id}/reactivate")
def reactivate_category(category_id: int, claims: dict = Depends(admin_claims), db: Session = Depends(get_db)):
    category = catalog.reactivate_category(db, category_id, claims)
    publish("category.reactivated", _event_payload(category), safe=True)
    return ok(category_out(category), "Category reactivated successfully")
