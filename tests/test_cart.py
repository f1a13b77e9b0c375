import cart
from database import create_document, db


def _add(client, auth, token, product_id, quantity=1, personalization=None):
    return client.post("/api/cart", json={
        "product_id": product_id, "quantity": quantity, "personalization": personalization,
    }, headers=auth(token))


def test_personalization_signature():
    assert cart.personalization_signature(None) == cart.PERSONALIZATION_NONE
    normalized = cart.normalize_personalization({"text": "  Anna ", "color": "", "number": None})
    assert normalized == {"text": "Anna", "color": None, "number": None}
    assert cart.personalization_signature(normalized) == '{"text":"Anna","color":null,"number":null}'
    assert cart.normalize_personalization({"text": "   "}) is None


def test_anonymous_cart_is_empty(client):
    assert client.get("/api/cart").json() == []
    assert client.get("/api/cart/total").json() == {"total": 0, "item_count": 0}
    assert client.post("/api/cart", json={"product_id": "x", "quantity": 1}).status_code == 401


def test_add_out_of_stock_is_rejected(client, user, auth, make_product):
    sold_out = make_product(in_stock=False)
    empty = make_product(name="Empty Shelf Balloon", stock=0)
    for product_id in (sold_out, empty):
        res = _add(client, auth, user[1], product_id, 3)
        assert res.status_code == 400
        assert res.json()["detail"] == "Product is out of stock"
    assert db["cartitem"].count_documents({}) == 0


def test_add_rejects_bad_quantities(client, user, auth, make_product):
    product_id = make_product()
    for quantity in (0, -2, 1.5):
        assert _add(client, auth, user[1], product_id, quantity).status_code == 400
    assert _add(client, auth, user[1], "65a1b2c3d4e5f60718293a4b").status_code == 404


def test_add_merges_and_clamps_to_stock(client, user, auth, make_product):
    product_id = make_product(stock=6, price=3)
    assert _add(client, auth, user[1], product_id, 3).json()["quantity"] == 3
    assert _add(client, auth, user[1], product_id, 5).json()["quantity"] == 6

    lines = client.get("/api/cart", headers=auth(user[1])).json()
    assert len(lines) == 1
    assert lines[0]["product"]["name"] == "Classic Red Balloon"
    assert client.get("/api/cart/total", headers=auth(user[1])).json() == {"total": 18.0, "item_count": 6}


def test_untracked_stock_is_not_clamped(client, user, auth, make_product):
    product_id = make_product(stock=None)
    assert _add(client, auth, user[1], product_id, 250).json()["quantity"] == 250


def test_personalized_lines_are_separate(client, user, auth, make_product):
    product_id = make_product()
    _add(client, auth, user[1], product_id, 1)
    _add(client, auth, user[1], product_id, 1, {"text": "Anna"})
    _add(client, auth, user[1], product_id, 1, {"text": " Anna "})

    lines = client.get("/api/cart", headers=auth(user[1])).json()
    by_text = {(line["personalization"] or {}).get("text"): line["quantity"] for line in lines}
    assert by_text == {None: 1, "Anna": 2}


def test_duplicate_lines_are_merged(user, make_product):
    user_id = user[0]
    product_id = make_product(stock=None)
    for quantity in (2, 3):
        create_document("cartitem", {
            "user_id": user_id, "product_id": product_id, "quantity": quantity,
            "personalization": None, "personalization_signature": cart.PERSONALIZATION_NONE,
        })
    merged = cart.find_cart_item(user_id, product_id, cart.PERSONALIZATION_NONE)
    assert merged["quantity"] == 5
    assert db["cartitem"].count_documents({"user_id": user_id}) == 1


def test_update_quantity_clamps_and_removes(client, user, auth, make_product):
    product_id = make_product(stock=10)
    _add(client, auth, user[1], product_id, 2)
    item_id = client.get("/api/cart", headers=auth(user[1])).json()[0]["_id"]

    res = client.patch(f"/api/cart/{item_id}", json={"quantity": 100}, headers=auth(user[1]))
    assert res.json()["quantity"] == 10

    res = client.patch(f"/api/cart/{item_id}", json={"quantity": -1}, headers=auth(user[1]))
    assert res.json() == {"_id": item_id, "quantity": 0, "removed": True}
    assert client.get("/api/cart", headers=auth(user[1])).json() == []


def test_update_rejects_sold_out_product(client, user, auth, make_product):
    product_id = make_product(stock=10)
    _add(client, auth, user[1], product_id, 2)
    item_id = client.get("/api/cart", headers=auth(user[1])).json()[0]["_id"]
    db["product"].update_one({}, {"$set": {"in_stock": False}})

    res = client.patch(f"/api/cart/{item_id}", json={"quantity": 3}, headers=auth(user[1]))
    assert res.status_code == 400


def test_cannot_touch_other_users_items(client, user, make_user, auth, make_product):
    product_id = make_product()
    _add(client, auth, user[1], product_id, 1)
    item_id = client.get("/api/cart", headers=auth(user[1])).json()[0]["_id"]
    _, other_token = make_user(name="Mallory", email="mallory@example.com")

    assert client.patch(f"/api/cart/{item_id}", json={"quantity": 5}, headers=auth(other_token)).status_code == 404
    assert client.delete(f"/api/cart/{item_id}", headers=auth(other_token)).status_code == 404


def test_remove_and_clear(client, user, auth, make_product):
    first = make_product()
    second = make_product(name="Blue Heart Balloon")
    _add(client, auth, user[1], first)
    _add(client, auth, user[1], second)
    item_id = client.get("/api/cart", headers=auth(user[1])).json()[0]["_id"]

    assert client.delete(f"/api/cart/{item_id}", headers=auth(user[1])).json() == {"deleted": True}
    assert client.delete("/api/cart", headers=auth(user[1])).json() == {"deleted": 1}
    assert client.get("/api/cart", headers=auth(user[1])).json() == []


def test_vanished_products_are_skipped(client, user, auth, make_product):
    product_id = make_product()
    _add(client, auth, user[1], product_id)
    db["product"].delete_many({})
    assert client.get("/api/cart", headers=auth(user[1])).json() == []


def test_import_guest_cart(client, user, auth, make_product):
    product_id = make_product(stock=None)
    sold_out = make_product(name="Sold Out Balloon", in_stock=False)
    items = [
        {"product_id": product_id, "quantity": 2},
        {"product_id": product_id, "quantity": 1.5},
        {"product_id": product_id, "quantity": 0},
        {"product_id": sold_out, "quantity": 1},
        {"product_id": "65a1b2c3d4e5f60718293a4b", "quantity": 1},
    ]
    res = client.post("/api/cart/import", json={"items": items}, headers=auth(user[1]))
    assert res.json() == {"imported": 1, "skipped": 4}

    # importing the same payload again adds up
    client.post("/api/cart/import", json={"items": items[:1]}, headers=auth(user[1]))
    lines = client.get("/api/cart", headers=auth(user[1])).json()
    assert [line["quantity"] for line in lines] == [4]
