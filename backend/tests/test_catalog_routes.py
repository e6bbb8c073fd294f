def product_names(response):
    return [product["name"] for product in response.get_json()["products"]]


def test_list_products_newest_first(client, products):
    response = client.get("/api/products")

    assert response.status_code == 200
    assert product_names(response) == ["Silk Dress", "Cotton Tee", "Linen Shirt"]
    assert response.get_json()["pagination"] == {"page": 1, "limit": 20, "total": 3, "pages": 1}


def test_list_products_paginates(client, products):
    response = client.get("/api/products?limit=2&page=2")

    assert product_names(response) == ["Linen Shirt"]
    assert response.get_json()["pagination"]["pages"] == 2


def test_category_filter_tolerates_plurals(client, products):
    response = client.get("/api/products?category=shirts")

    assert sorted(product_names(response)) == ["Cotton Tee", "Linen Shirt"]


def test_price_range_filters_on_offer_price(client, products):
    response = client.get("/api/products?minPrice=400&maxPrice=1000")

    assert product_names(response) == ["Linen Shirt"]


def test_size_filter(client, products):
    response = client.get("/api/products?sizes=s")

    assert sorted(product_names(response)) == ["Linen Shirt", "Silk Dress"]


def test_sort_by_price(client, products):
    response = client.get("/api/products?sort=price-low")

    assert product_names(response) == ["Cotton Tee", "Linen Shirt", "Silk Dress"]


def test_search_text_is_treated_literally(client, products):
    response = client.get("/api/products?search=.*")

    assert product_names(response) == []


def test_filter_options(client, products):
    response = client.get("/api/products/filters/options")

    filters = response.get_json()["filters"]
    assert sorted(filters["categories"]) == ["Dress", "Shirt", "T-Shirt"]
    assert sorted(filters["brands"]) == ["Basics", "Loom"]


def test_product_by_slug(client, products):
    response = client.get("/api/products/slug/linen-shirt")

    product = response.get_json()["product"]
    assert product["id"] == str(products["shirt"]["_id"])
    assert product["reviews"] == []


def test_product_by_id(client, products):
    response = client.get(f"/api/products/{products['tee']['_id']}")

    assert response.get_json()["product"]["slug"] == "cotton-tee"


def test_unknown_product_is_not_found(client, products):
    assert client.get("/api/products/not-an-id").status_code == 404
    assert client.get("/api/products/5f1d7f0b8f1b2c3d4e5f6a7b").status_code == 404
    assert client.get("/api/products/slug/nothing-here").status_code == 404


def test_unknown_route_has_json_error(client):
    response = client.get("/api/does-not-exist")

    assert response.status_code == 404
    assert response.get_json() == {
        "success": False,
        "error": "not_found",
        "message": "Route not found",
    }


def test_review_updates_product_rating(client, store, user, products, auth_headers):
    product_id = products["shirt"]["_id"]

    response = client.post(
        f"/api/products/{product_id}/reviews",
        json={"rating": 4, "comment": "Great fit"},
        headers=auth_headers(user),
    )

    assert response.status_code == 201
    assert response.get_json()["review"]["user"]["name"] == "Asha Rao"
    stored = store.products.find_one({"_id": product_id})
    assert stored["rating"] == 4
    assert stored["review_count"] == 1

    detail = client.get(f"/api/products/{product_id}").get_json()["product"]
    assert [review["comment"] for review in detail["reviews"]] == ["Great fit"]


def test_one_review_per_user(client, user, products, auth_headers):
    url = f"/api/products/{products['shirt']['_id']}/reviews"
    client.post(url, json={"rating": 5, "comment": "Love it"}, headers=auth_headers(user))

    response = client.post(url, json={"rating": 1, "comment": "Changed my mind"}, headers=auth_headers(user))

    assert response.status_code == 400


def test_review_rating_must_be_in_range(client, user, products, auth_headers):
    response = client.post(
        f"/api/products/{products['shirt']['_id']}/reviews",
        json={"rating": 7, "comment": "Too good"},
        headers=auth_headers(user),
    )

    assert response.status_code == 400


def test_reviews_require_login(client, products):
    response = client.post(
        f"/api/products/{products['shirt']['_id']}/reviews",
        json={"rating": 5, "comment": "Anonymous"},
    )

    assert response.status_code == 401


def test_search_matches_names_descriptions_and_categories(client, products):
    response = client.get("/api/search?q=shirt")

    assert sorted(product_names(response)) == ["Cotton Tee", "Linen Shirt"]


def test_search_understands_price_caps(client, products):
    response = client.get("/api/search?q=shirt under 400")

    assert product_names(response) == ["Cotton Tee"]


def test_empty_search_returns_nothing(client, products):
    assert client.get("/api/search?q=").get_json()["products"] == []
