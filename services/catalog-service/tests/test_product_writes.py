import pytest

from app import repository
from app.models import Product, ProductCategory

from conftest import PNG_BYTES, stored_files


def _png(name="photo.png", data=PNG_BYTES):
    return {"image": (name, data, "image/png")}


@pytest.fixture
def seeded(make_category):
    return {
        "electronics": make_category("Electronics"),
        "books": make_category("Books"),
        "retired": make_category("Retired", is_active=False),
    }


def _create(client, headers, files=None, **overrides):
    form = {
        "name": "E-reader",
        "description": "Glare-free screen",
        "price": "150000",
        "stock": "4",
        "categories": ["Electronics", "books"],
    }
    form.update(overrides)
    return client.post("/products", data=form, files=files or _png(), headers=headers)


def test_create_product(client, db, admin_headers, seeded):
    resp = _create(client, admin_headers)

    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    data = body["data"]
    assert data["name"] == "E-reader"
    assert data["stock"] == 4
    assert sorted(c["name"] for c in data["categories"]) == ["Books", "Electronics"]
    assert data["image"].startswith(f"products/{data['id']}/")
    assert data["image_url"] == f"/static/{data['image']}"
    assert stored_files() == [data["image"]]


def test_create_rejects_inactive_and_unknown_categories_together(client, db, admin_headers, seeded):
    resp = _create(client, admin_headers, categories=["Electronics", "Retired", "Toys"])

    assert resp.status_code == 422
    body = resp.json()
    messages = body["errors"]["categories"]
    assert len(messages) == 2
    assert "Retired" in messages[0]
    assert "Toys" in messages[1]
    assert db.query(Product).count() == 0
    assert db.query(ProductCategory).count() == 0
    assert stored_files() == []


def test_create_reports_every_invalid_field(client, admin_headers, seeded):
    resp = client.post(
        "/products",
        data={"price": "5", "stock": "-1"},
        headers=admin_headers,
    )

    assert resp.status_code == 422
    errors = resp.json()["errors"]
    assert {"name", "price", "stock", "categories", "image"} <= set(errors)


@pytest.mark.parametrize(
    "files",
    [
        {"image": ("notes.txt", b"plain text", "text/plain")},
        {"image": ("huge.png", b"\x00" * (2 * 1024 * 1024 + 1), "image/png")},
    ],
)
def test_bad_upload_leaves_no_row_and_no_file(client, db, admin_headers, seeded, files):
    resp = _create(client, admin_headers, files=files)

    assert resp.status_code == 422
    assert "image" in resp.json()["errors"]
    assert db.query(Product).count() == 0
    assert stored_files() == []


def test_create_failure_removes_uploaded_file(client, db, admin_headers, seeded, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(repository, "sync_associations", boom)

    resp = _create(client, admin_headers)

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "message": "Failed to create product"}
    assert db.query(Product).count() == 0
    assert stored_files() == []


def test_update_is_partial(client, db, admin_headers, seeded):
    created = _create(client, admin_headers).json()["data"]

    resp = client.put(f"/products/{created['id']}", data={"price": "200000"}, headers=admin_headers)

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["price"] == "200000.00"
    assert data["name"] == "E-reader"
    assert data["image"] == created["image"]
    assert sorted(c["name"] for c in data["categories"]) == ["Books", "Electronics"]


def test_update_replaces_category_set_idempotently(client, db, admin_headers, seeded):
    product_id = _create(client, admin_headers).json()["data"]["id"]

    for _ in range(2):
        resp = client.put(
            f"/products/{product_id}",
            data={"categories": "Books"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert [c["name"] for c in resp.json()["data"]["categories"]] == ["Books"]

    rows = db.query(ProductCategory).filter(ProductCategory.product_id == product_id).all()
    assert [r.category_id for r in rows] == [seeded["books"].id]


def test_update_with_inactive_category_changes_nothing(client, db, admin_headers, seeded):
    product_id = _create(client, admin_headers).json()["data"]["id"]

    resp = client.put(
        f"/products/{product_id}",
        data={"name": "Renamed", "categories": ["Retired"]},
        headers=admin_headers,
    )

    assert resp.status_code == 422
    assert "Retired" in resp.json()["errors"]["categories"][0]
    db.rollback()
    product = db.get(Product, product_id)
    assert product.name == "E-reader"
    assert sorted(c.name for c in product.categories) == ["Books", "Electronics"]


def test_replacing_image_deletes_old_file_after_commit(client, db, admin_headers, seeded):
    created = _create(client, admin_headers).json()["data"]

    resp = client.put(
        f"/products/{created['id']}",
        files=_png("new.jpg"),
        headers=admin_headers,
        data={},
    )

    assert resp.status_code == 200
    new_image = resp.json()["data"]["image"]
    assert new_image != created["image"]
    assert new_image.endswith(".jpg")
    assert stored_files() == [new_image]


def test_failed_update_keeps_old_image_and_drops_new_upload(client, db, admin_headers, seeded, monkeypatch):
    created = _create(client, admin_headers).json()["data"]

    def boom(*args, **kwargs):
        raise RuntimeError("lost connection")

    monkeypatch.setattr(repository, "sync_associations", boom)

    resp = client.put(
        f"/products/{created['id']}",
        data={"name": "Renamed", "categories": "Books"},
        files=_png("new.png"),
        headers=admin_headers,
    )

    assert resp.status_code == 500
    assert stored_files() == [created["image"]]
    db.rollback()
    product = db.get(Product, created["id"])
    assert product.image == created["image"]
    assert product.name == "E-reader"


def test_update_missing_product_is_404(client, admin_headers):
    resp = client.put("/products/999", data={"name": "x"}, headers=admin_headers)

    assert resp.status_code == 404


def test_update_missing_product_is_404_even_with_invalid_fields(client, admin_headers):
    resp = client.put("/products/999", data={"price": "1", "stock": "-3"}, headers=admin_headers)

    assert resp.status_code == 404
    assert resp.json() == {"success": False, "message": "Product not found"}


def test_soft_delete_hides_product_and_keeps_row(client, db, admin_headers, seeded):
    created = _create(client, admin_headers).json()["data"]

    resp = client.delete(f"/products/{created['id']}", headers=admin_headers)

    assert resp.status_code == 200
    assert client.get(f"/products/{created['id']}").status_code == 404
    assert client.get("/products").json()["data"] == []
    db.rollback()
    product = db.get(Product, created["id"])
    assert product.is_active is False
    assert len(product.categories) == 2
    assert stored_files() == [created["image"]]


def test_soft_delete_twice_is_conflict(client, admin_headers, seeded):
    product_id = _create(client, admin_headers).json()["data"]["id"]
    client.delete(f"/products/{product_id}", headers=admin_headers)

    resp = client.delete(f"/products/{product_id}", headers=admin_headers)

    assert resp.status_code == 400


def test_delete_guard_blocks_linked_product(client, db, admin_headers, seeded):
    from app import catalog
    from app.errors import ConflictingState

    product_id = _create(client, admin_headers).json()["data"]["id"]

    with pytest.raises(ConflictingState):
        catalog.soft_delete_product(db, product_id, {"sub": "1"}, guard=True)


def test_hard_delete_removes_row_links_and_file(client, db, admin_headers, seeded):
    created = _create(client, admin_headers).json()["data"]

    resp = client.delete(f"/products/{created['id']}", params={"hard": "true"}, headers=admin_headers)

    assert resp.status_code == 200
    db.rollback()
    assert db.get(Product, created["id"]) is None
    assert db.query(ProductCategory).count() == 0
    assert stored_files() == []


def test_reactivate_product(client, admin_headers, seeded):
    product_id = _create(client, admin_headers).json()["data"]["id"]

    assert client.post(f"/products/{product_id}/reactivate", headers=admin_headers).status_code == 400

    client.delete(f"/products/{product_id}", headers=admin_headers)
    resp = client.post(f"/products/{product_id}/reactivate", headers=admin_headers)

    assert resp.status_code == 200
    assert resp.json()["data"]["is_active"] is True
    assert client.get(f"/products/{product_id}").status_code == 200
