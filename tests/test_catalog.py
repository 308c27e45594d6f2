import pytest
from bson import ObjectId

PRODUCT = {
    "name": "Trail Runner",
    "description": "Lightweight running shoe",
    "brand": "Acme",
    "category": "Shoes",
    "sizes": ["M", "L"],
    "colors": ["red", "black"],
    "price": 89.5,
    "quantity": 20,
    "images": ["https://img.example/trail.jpg"],
}


@pytest.fixture
def catalog(client, admin_headers):
    assert client.post("/categories", json={"name": "Shoes"}, headers=admin_headers).status_code == 201
    assert client.post("/brands", json={"name": "ACME"}, headers=admin_headers).status_code == 201


def _create(client, headers, **overrides):
    resp = client.post("/products", json={**PRODUCT, **overrides}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["product"]


def test_categories_and_brands_are_lowercased_and_unique(client, admin_headers, catalog):
    cats = client.get("/categories").json()["categories"]
    assert [c["name"] for c in cats] == ["shoes"]
    assert client.get("/brands").json()["brands"][0]["name"] == "acme"

    resp = client.post("/categories", json={"name": "SHOES"}, headers=admin_headers)
    assert resp.status_code == 409
    assert client.post("/brands", json={"name": "acme"}, headers=admin_headers).status_code == 409


def test_category_and_brand_crud(client, admin_headers, catalog):
    cid = client.get("/categories").json()["categories"][0]["_id"]
    resp = client.put(f"/categories/{cid}", json={"name": "Boots"}, headers=admin_headers)
    assert resp.json()["category"]["name"] == "boots"
    assert client.get(f"/categories/{cid}").json()["category"]["name"] == "boots"
    assert client.delete(f"/categories/{cid}", headers=admin_headers).status_code == 200
    assert client.get(f"/categories/{cid}").status_code == 404

    bid = client.get("/brands").json()["brands"][0]["_id"]
    assert client.put(f"/brands/{bid}", json={"name": "Zed"}, headers=admin_headers).json()["brand"]["name"] == "zed"
    assert client.delete(f"/brands/{bid}", headers=admin_headers).status_code == 200
    assert client.delete(f"/brands/{bid}", headers=admin_headers).status_code == 404


def test_rename_onto_existing_name_conflicts(client, db, admin_headers, catalog):
    client.post("/categories", json={"name": "Hats"}, headers=admin_headers)
    hats = db["category"].find_one({"name": "hats"})["_id"]
    resp = client.put(f"/categories/{hats}", json={"name": "SHOES"}, headers=admin_headers)
    assert resp.status_code == 409
    assert db["category"].count_documents({"name": "shoes"}) == 1
    # renaming to its own name is fine
    assert client.put(f"/categories/{hats}", json={"name": "Hats"}, headers=admin_headers).status_code == 200

    client.post("/brands", json={"name": "Zed"}, headers=admin_headers)
    zed = db["brand"].find_one({"name": "zed"})["_id"]
    assert client.put(f"/brands/{zed}", json={"name": "Acme"}, headers=admin_headers).status_code == 409
    assert db["brand"].count_documents({"name": "acme"}) == 1

    _create(client, admin_headers)
    other = _create(client, admin_headers, name="Road Racer")
    resp = client.put(f"/products/{other['_id']}", json={"name": "Trail Runner"}, headers=admin_headers)
    assert resp.status_code == 409
    assert db["product"].count_documents({"name": "Trail Runner"}) == 1


def test_create_product_links_category_and_brand(client, db, admin_headers, catalog):
    product = _create(client, admin_headers)
    assert product["total_reviews"] == 0
    assert product["average_rating"] == 0
    assert product["total_sold"] == 0

    pid = ObjectId(product["_id"])
    assert db["category"].find_one({"name": "shoes"})["products"] == [pid]
    assert db["brand"].find_one({"name": "acme"})["products"] == [pid]


def test_create_product_conflicts_and_missing_refs(client, admin_headers, catalog):
    _create(client, admin_headers)
    assert client.post("/products", json=PRODUCT, headers=admin_headers).status_code == 409

    resp = client.post("/products", json={**PRODUCT, "name": "Other", "category": "Hats"}, headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "Category not found! Please create a category first"

    resp = client.post("/products", json={**PRODUCT, "name": "Other", "brand": "Nobody"}, headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "Brand not found! Please create a brand first"


def test_create_product_requires_admin(client, user_headers):
    assert client.post("/products", json=PRODUCT, headers=user_headers).status_code == 403
    assert client.post("/products", json=PRODUCT).status_code == 401


def test_list_products_filters_and_pagination(client, admin_headers, catalog):
    for i in range(5):
        _create(client, admin_headers, name=f"Runner {i}", price=10 + i * 10, colors=["blue" if i % 2 else "red"])

    resp = client.get("/products", params={"limit": 2})
    body = resp.json()
    assert body["total"] == 5
    assert body["results"] == 2
    assert body["pagination"] == {"next": {"page": 2, "limit": 2}}

    body = client.get("/products", params={"limit": 2, "page": 3}).json()
    assert body["results"] == 1
    assert body["pagination"] == {"prev": {"page": 2, "limit": 2}}

    assert client.get("/products", params={"color": "BLUE"}).json()["total"] == 2
    assert client.get("/products", params={"name": "runner 3"}).json()["total"] == 1
    assert client.get("/products", params={"price": "20-40"}).json()["total"] == 3
    assert client.get("/products", params={"price": "cheap"}).status_code == 400


def test_get_update_delete_product(client, db, admin_headers, catalog):
    product = _create(client, admin_headers)
    pid = product["_id"]

    assert client.get(f"/products/{pid}").json()["product"]["name"] == "Trail Runner"

    resp = client.put(f"/products/{pid}", json={"price": 79.0}, headers=admin_headers)
    assert resp.status_code == 200
    updated = resp.json()["product"]
    assert updated["price"] == 79.0
    assert updated["name"] == "Trail Runner"

    assert client.delete(f"/products/{pid}", headers=admin_headers).status_code == 200
    assert client.get(f"/products/{pid}").status_code == 404
    assert db["category"].find_one({"name": "shoes"})["products"] == []
    assert client.put(f"/products/{pid}", json={"price": 1}, headers=admin_headers).status_code == 404


def test_invalid_product_id(client):
    resp = client.get("/products/xyz")
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid ID"


def test_reviews_feed_average_rating(client, admin_headers, user_headers, catalog):
    pid = _create(client, admin_headers)["_id"]

    resp = client.post(f"/reviews/{pid}", json={"message": "Great", "rating": 5}, headers=user_headers)
    assert resp.status_code == 201
    resp = client.post(f"/reviews/{pid}", json={"message": "Fine", "rating": 2}, headers=admin_headers)
    assert resp.status_code == 201

    product = client.get(f"/products/{pid}").json()["product"]
    assert product["total_reviews"] == 2
    assert product["average_rating"] == 3.5
    assert {r["message"] for r in product["reviews"]} == {"Great", "Fine"}


def test_one_review_per_user(client, admin_headers, user_headers, catalog):
    pid = _create(client, admin_headers)["_id"]
    client.post(f"/reviews/{pid}", json={"message": "Great", "rating": 5}, headers=user_headers)
    resp = client.post(f"/reviews/{pid}", json={"message": "Again", "rating": 1}, headers=user_headers)
    assert resp.status_code == 409


def test_review_validation(client, user_headers):
    resp = client.post(f"/reviews/{ObjectId()}", json={"message": "?", "rating": 4}, headers=user_headers)
    assert resp.status_code == 404
    resp = client.post(f"/reviews/{ObjectId()}", json={"message": "?", "rating": 9}, headers=user_headers)
    assert resp.status_code == 400
