from decimal import Decimal

from storefront.catalog import slugify

from conftest import make_category, make_product


def test_slugify():
    assert slugify("Air Jordan 1 Retro") == "air-jordan-1-retro"
    assert slugify("  !!  ") == "item"


async def test_product_list_is_plain_array_without_limit(client, fresh_db):
    await make_product(sku="A-1", name="Alpha")
    await make_product(sku="B-2", name="Beta")
    r = await client.get("/api/products")
    assert r.status_code == 200
    body = r.json()
    assert isinstance(body, list)
    assert {p["sku"] for p in body} == {"A-1", "B-2"}


async def test_product_list_paginates_with_limit(client, fresh_db):
    for i in range(3):
        await make_product(sku=f"P-{i}", name=f"Produkt {i}")
    r = await client.get("/api/products", params={"limit": 2, "page": 2, "sort": "sku"})
    body = r.json()
    assert body["total"] == 3
    assert body["totalPages"] == 2
    assert [p["sku"] for p in body["data"]] == ["P-2"]


async def test_product_filters(client, fresh_db):
    shoes = await make_category()
    await make_product(sku="S-1", name="Runner", price=Decimal("80"), category_id=shoes.id, tags=["Sneaker", "Nike"])
    await make_product(sku="S-2", name="Court", price=Decimal("150"), category_id=shoes.id, tags=["Sneaker"])
    await make_product(sku="H-1", name="Hoodie", price=Decimal("60"), in_stock=False, tags=["Streetwear"])

    r = await client.get("/api/products", params={"category_id": shoes.id})
    assert {p["sku"] for p in r.json()} == {"S-1", "S-2"}

    r = await client.get("/api/products", params={"min_price": 70, "max_price": 100})
    assert [p["sku"] for p in r.json()] == ["S-1"]

    r = await client.get("/api/products", params={"in_stock": "false"})
    assert [p["sku"] for p in r.json()] == ["H-1"]

    r = await client.get("/api/products", params={"search": "hood"})
    assert [p["sku"] for p in r.json()] == ["H-1"]

    r = await client.get("/api/products", params=[("tags", "Sneaker"), ("tags", "Nike")])
    assert [p["sku"] for p in r.json()] == ["S-1"]


async def test_minimal_product_shape(client, fresh_db):
    await make_product()
    r = await client.get("/api/products", params={"minimal": "true"})
    product = r.json()[0]
    assert "description" not in product
    assert product["price"] == 100.0


async def test_get_product_and_404(client, fresh_db):
    p = await make_product()
    r = await client.get(f"/api/products/{p.id}")
    assert r.status_code == 200
    assert r.json()["name"] == "Test Sneaker"

    r = await client.get("/api/products/missing")
    assert r.status_code == 404
    assert r.json() == {"error": "Not Found", "message": "Product not found"}


async def test_product_hype_uses_fallback_hooks(client, fresh_db):
    p = await make_product(name="Nebula Vape")
    r = await client.get(f"/api/products/{p.id}/hype")
    assert r.status_code == 200
    assert r.json()["hype"]


async def test_admin_creates_product_with_images(client, admin_headers):
    payload = {
        "sku": "NEW-1",
        "name": "Neues Produkt",
        "price": 49.5,
        "images": ["/uploads/a.jpg", "/uploads/b.jpg"],
        "colors": [{"id": "c1", "name": "Black", "hex": "#000"}],
    }
    r = await client.post("/api/products", json=payload, headers=admin_headers)
    assert r.status_code == 201
    body = r.json()
    assert body["cover_image"] == "/uploads/a.jpg"
    assert [i["url"] for i in body["product_images"]] == ["/uploads/a.jpg", "/uploads/b.jpg"]

    r = await client.get(f"/api/products/{body['id']}/images")
    assert len(r.json()) == 2


async def test_duplicate_sku_is_conflict(client, admin_headers):
    await make_product(sku="DUP")
    r = await client.post("/api/products", json={"sku": "DUP", "name": "x", "price": 1}, headers=admin_headers)
    assert r.status_code == 409
    assert r.json() == {"error": "Conflict", "message": "Duplicate entry"}


async def test_customer_cannot_create_product(client, customer_headers):
    r = await client.post("/api/products", json={"sku": "X", "name": "x", "price": 1}, headers=customer_headers)
    assert r.status_code == 403


async def test_admin_updates_and_deletes_product(client, admin_headers):
    p = await make_product()
    r = await client.patch(f"/api/products/{p.id}", json={"price": 120, "stock": 0}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["price"] == 120.0
    assert r.json()["stock"] == 0

    r = await client.delete(f"/api/products/{p.id}", headers=admin_headers)
    assert r.json() == {"message": "Product deleted"}
    r = await client.get(f"/api/products/{p.id}")
    assert r.status_code == 404


async def test_validation_error_shape(client, admin_headers):
    r = await client.post("/api/products", json={"name": "ohne sku"}, headers=admin_headers)
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "Validation Error"
    assert body["message"] == "Invalid input data"
    assert body["details"]


async def test_categories_crud(client, admin_headers):
    r = await client.post("/api/categories", json={"name": "Neue Kategorie"}, headers=admin_headers)
    assert r.status_code == 201
    category = r.json()
    assert category["slug"] == "neue-kategorie"

    r = await client.patch(f"/api/categories/{category['id']}", json={"sort_order": 3}, headers=admin_headers)
    assert r.json()["sort_order"] == 3

    r = await client.get("/api/categories")
    assert [c["name"] for c in r.json()] == ["Neue Kategorie"]

    r = await client.delete(f"/api/categories/{category['id']}", headers=admin_headers)
    assert r.json() == {"message": "Category deleted"}

    r = await client.get(f"/api/categories/{category['id']}")
    assert r.status_code == 404
    assert r.json()["message"] == "Category not found"


async def test_brands_sorted_by_sort_order(client, admin_headers):
    await client.post("/api/brands", json={"name": "Zeta", "sort_order": 2}, headers=admin_headers)
    await client.post("/api/brands", json={"name": "Alpha", "sort_order": 1}, headers=admin_headers)
    r = await client.get("/api/brands")
    assert [b["name"] for b in r.json()] == ["Alpha", "Zeta"]


async def test_unknown_route_message(client, fresh_db):
    r = await client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert r.json()["message"] == "Route GET /api/does-not-exist not found"


async def test_health(client, fresh_db):
    r = await client.get("/health")
    assert r.json()["status"] == "ok"
