from storefront.realtime import manager

from conftest import RecordingSocket, auth_headers, make_cart_item, make_product, make_user


async def test_add_merges_quantity_for_same_product(client, customer, customer_headers):
    p = await make_product()
    r = await client.post("/api/cart-items", json={"product_id": p.id, "quantity": 2}, headers=customer_headers)
    assert r.status_code == 201
    first = r.json()
    assert first["quantity"] == 2
    assert first["product"]["id"] == p.id

    r = await client.post("/api/cart-items", json={"product_id": p.id}, headers=customer_headers)
    assert r.json()["id"] == first["id"]
    assert r.json()["quantity"] == 3

    r = await client.get("/api/cart-items", headers=customer_headers)
    assert len(r.json()) == 1


async def test_add_unknown_product(client, customer_headers):
    r = await client.post("/api/cart-items", json={"product_id": "nope"}, headers=customer_headers)
    assert r.status_code == 404
    assert r.json()["message"] == "Product not found"


async def test_add_rejects_zero_quantity(client, customer_headers):
    p = await make_product()
    r = await client.post("/api/cart-items", json={"product_id": p.id, "quantity": 0}, headers=customer_headers)
    assert r.status_code == 400


async def test_update_and_remove(client, customer, customer_headers):
    p = await make_product()
    item = await make_cart_item(customer.id, p.id)
    r = await client.patch(f"/api/cart-items/{item.id}", json={"quantity": 4}, headers=customer_headers)
    assert r.status_code == 200
    assert r.json()["quantity"] == 4

    r = await client.delete(f"/api/cart-items/{item.id}", headers=customer_headers)
    assert r.json() == {"message": "Item removed from cart"}
    r = await client.get("/api/cart-items", headers=customer_headers)
    assert r.json() == []


async def test_cannot_touch_foreign_cart_item(client, customer):
    other = await make_user(email="anna@example.com", username="anna")
    p = await make_product()
    item = await make_cart_item(customer.id, p.id)
    r = await client.patch(f"/api/cart-items/{item.id}", json={"quantity": 9}, headers=auth_headers(other))
    assert r.status_code == 404
    assert r.json()["message"] == "Cart item not found"
    r = await client.delete(f"/api/cart-items/{item.id}", headers=auth_headers(other))
    assert r.status_code == 404


async def test_clear_cart(client, customer, customer_headers):
    p1 = await make_product(sku="A")
    p2 = await make_product(sku="B")
    await make_cart_item(customer.id, p1.id)
    await make_cart_item(customer.id, p2.id, quantity=3)
    r = await client.delete("/api/cart-items", headers=customer_headers)
    assert r.json() == {"message": "Cart cleared"}
    r = await client.get("/api/cart-items", headers=customer_headers)
    assert r.json() == []


async def test_mutations_push_one_refresh_to_owner(client, customer, customer_headers):
    p = await make_product()
    sock = RecordingSocket()
    admin_sock = RecordingSocket()
    manager.join(sock, f"user_{customer.id}")
    manager.join(admin_sock, "role_admin")
    try:
        r = await client.post("/api/cart-items", json={"product_id": p.id}, headers=customer_headers)
        await client.patch(f"/api/cart-items/{r.json()['id']}", json={"quantity": 3}, headers=customer_headers)
    finally:
        manager.disconnect(sock)
        manager.disconnect(admin_sock)
    assert [f["event"] for f in sock.frames] == ["cart:update", "cart:update"]
    assert sock.events("cart:update")[0] == {"action": "refresh", "user_id": customer.id}
    changes = admin_sock.events("table:cart_items")
    assert [c["type"] for c in changes] == ["UPSERT", "UPDATE"]
    assert changes[1]["new"]["quantity"] == 3


async def test_wishlist(client, customer_headers):
    p = await make_product()
    r = await client.post(f"/api/wishlist-items/{p.id}", headers=customer_headers)
    assert r.status_code == 201
    assert r.json()["product"]["id"] == p.id

    r = await client.post(f"/api/wishlist-items/{p.id}", headers=customer_headers)
    assert r.status_code == 409
    assert r.json()["message"] == "Product already in wishlist"

    r = await client.get("/api/wishlist-items", headers=customer_headers)
    assert len(r.json()) == 1

    r = await client.delete(f"/api/wishlist-items/{p.id}", headers=customer_headers)
    assert r.json() == {"message": "Removed from wishlist"}
    r = await client.delete(f"/api/wishlist-items/{p.id}", headers=customer_headers)
    assert r.status_code == 404
