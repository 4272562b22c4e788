import pytest
from bson import ObjectId

import cart as cart_service
from errors import ConflictError, InsufficientStockError


def add(client, headers, product_id, quantity=1, **extra):
    return client.post("/api/cart/add", json={"productId": product_id, "quantity": quantity, **extra}, headers=headers)


def test_get_cart_creates_empty_cart(client, db, user):
    res = client.get("/api/cart", headers=user["headers"])
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["items"] == []
    assert data["subtotal"] == 0
    assert data["shipping"] == 99
    assert data["total"] == 99
    assert db["cart"].count_documents({"user_id": user["id"]}) == 1


def test_cart_requires_auth(client):
    assert client.get("/api/cart").status_code == 401


def test_add_merges_identical_lines(client, user, make_product):
    product = make_product(stock_quantity=5)
    add(client, user["headers"], product["id"], 2, size="M", color="Red")
    res = add(client, user["headers"], product["id"], 3, size="M", color="Red")
    assert res.status_code == 200
    items = res.json()["data"]["items"]
    assert len(items) == 1
    assert items[0]["quantity"] == 5
    assert items[0]["product"]["price"] == 500


def test_add_over_merged_stock_fails(client, user, make_product):
    product = make_product(stock_quantity=3)
    add(client, user["headers"], product["id"], 2, size="M")
    res = add(client, user["headers"], product["id"], 2, size="M")
    assert res.status_code == 400
    assert res.json()["message"] == "Insufficient stock available"
    items = client.get("/api/cart", headers=user["headers"]).json()["data"]["items"]
    assert items[0]["quantity"] == 2


def test_different_variants_are_separate_lines(client, user, make_product):
    product = make_product(stock_quantity=5)
    add(client, user["headers"], product["id"], 1, size="M")
    res = add(client, user["headers"], product["id"], 1, size="L")
    assert len(res.json()["data"]["items"]) == 2


def test_add_validation_and_missing_product(client, user, make_product):
    product = make_product()
    assert add(client, user["headers"], product["id"], 0).status_code == 400
    assert add(client, user["headers"], "5f0000000000000000000000").status_code == 404
    assert add(client, user["headers"], product["id"], 4).status_code == 400


def test_totals_and_free_shipping(client, user, make_product):
    product = make_product(price=500, stock_quantity=5)
    data = add(client, user["headers"], product["id"], 2).json()["data"]
    assert data["subtotal"] == 1000
    assert data["shipping"] == 0
    assert data["total"] == 1000
    assert data["total_items"] == 2


def test_update_overwrites_quantity(client, user, make_product):
    product = make_product(stock_quantity=5)
    item_id = add(client, user["headers"], product["id"], 2).json()["data"]["items"][0]["item_id"]
    res = client.put(f"/api/cart/update/{item_id}", json={"quantity": 4}, headers=user["headers"])
    assert res.status_code == 200
    assert res.json()["data"]["items"][0]["quantity"] == 4
    res = client.put(f"/api/cart/update/{item_id}", json={"quantity": 6}, headers=user["headers"])
    assert res.status_code == 400
    res = client.put("/api/cart/update/missing", json={"quantity": 1}, headers=user["headers"])
    assert res.status_code == 404
    assert res.json()["message"] == "Item not found in cart"


def test_update_and_remove_without_cart(client, user):
    assert client.put("/api/cart/update/x", json={"quantity": 1}, headers=user["headers"]).status_code == 404
    assert client.delete("/api/cart/remove/x", headers=user["headers"]).status_code == 404
    res = client.delete("/api/cart/clear", headers=user["headers"])
    assert res.status_code == 404
    assert res.json()["message"] == "Cart not found"


def test_remove_and_clear(client, user, make_product):
    product = make_product(stock_quantity=5)
    add(client, user["headers"], product["id"], 1, size="M")
    data = add(client, user["headers"], product["id"], 1, size="L").json()["data"]
    res = client.delete(f"/api/cart/remove/{data['items'][0]['item_id']}", headers=user["headers"])
    assert len(res.json()["data"]["items"]) == 1
    assert client.delete("/api/cart/clear", headers=user["headers"]).status_code == 200
    assert client.get("/api/cart", headers=user["headers"]).json()["data"]["items"] == []


def test_deleted_product_is_left_out_of_totals(client, db, user, make_product):
    product = make_product(price=200)
    add(client, user["headers"], product["id"], 1)
    db["product"].delete_one({"_id": ObjectId(product["id"])})
    data = client.get("/api/cart", headers=user["headers"]).json()["data"]
    assert data["items"][0]["product"] is None
    assert data["subtotal"] == 0


def test_stale_cart_write_is_rejected(db, user, make_product):
    product = make_product(stock_quantity=5)
    cart_service.add_item(db, user["id"], product["id"], 1)
    stale = db["cart"].find_one({"user_id": user["id"]})
    cart_service.add_item(db, user["id"], product["id"], 1)
    assert cart_service.save_items(db, stale, []) is False
    assert db["cart"].find_one({"user_id": user["id"]})["items"][0]["quantity"] == 2


def test_mutate_gives_up_after_repeated_conflicts(db, user, monkeypatch):
    cart_service.find_cart(db, user["id"])
    monkeypatch.setattr(cart_service, "save_items", lambda db, cart, items: False)
    with pytest.raises(ConflictError):
        cart_service.clear_cart(db, user["id"])


def test_concurrent_add_of_last_unit_rechecks_merged_stock(db, user, make_product, monkeypatch):
    product = make_product(stock_quantity=1)
    cart_service.find_cart(db, user["id"])
    real_save = cart_service.save_items
    calls = []

    def racing_save(db, cart, items):
        if not calls:
            # another request adds the same unit between our read and our write
            real_save(db, db["cart"].find_one({"_id": cart["_id"]}), [dict(items[0])])
        calls.append(items)
        return real_save(db, cart, items)

    monkeypatch.setattr(cart_service, "save_items", racing_save)
    with pytest.raises(InsufficientStockError):
        cart_service.add_item(db, user["id"], product["id"], 1)
    assert len(calls) == 1
    items = db["cart"].find_one({"user_id": user["id"]})["items"]
    assert [it["quantity"] for it in items] == [1]


def test_wishlist(client, user, make_product):
    product = make_product()
    assert client.post("/api/cart/wishlist/add/5f0000000000000000000000", headers=user["headers"]).status_code == 404
    res = client.post(f"/api/cart/wishlist/add/{product['id']}", headers=user["headers"])
    assert res.status_code == 200
    assert [p["id"] for p in res.json()["data"]] == [product["id"]]
    res = client.post(f"/api/cart/wishlist/add/{product['id']}", headers=user["headers"])
    assert res.status_code == 400
    assert res.json()["message"] == "Product already in wishlist"
    res = client.delete(f"/api/cart/wishlist/remove/{product['id']}", headers=user["headers"])
    assert res.json()["data"] == []
    assert client.get("/api/cart/wishlist", headers=user["headers"]).json()["data"] == []
