import pytest

import main
from schemas import POSTS


def signup(client, email="jane@example.com", username="jane"):
    return client.post("/api/auth/signup", json={"username": username, "email": email, "password": "correct horse"})


def bearer(response):
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


class TestAuth:
    def test_first_account_administers(self, client):
        first = signup(client)
        assert first.status_code == 200
        assert client.get("/api/auth/me", headers=bearer(first)).json()["role"] == "administrator"

        second = signup(client, email="joe@example.com", username="joe")
        assert client.get("/api/auth/me", headers=bearer(second)).json()["role"] == "subscriber"

    def test_me_hides_password_hash(self, client):
        me = client.get("/api/auth/me", headers=bearer(signup(client))).json()
        assert me["email"] == "jane@example.com"
        assert "password_hash" not in me

    def test_duplicate_email(self, client):
        signup(client)
        response = signup(client, username="other")
        assert response.status_code == 400

    def test_login(self, client):
        signup(client)
        response = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "correct horse"})
        assert response.status_code == 200
        assert response.json()["token_type"] == "bearer"

    def test_wrong_password(self, client):
        signup(client)
        response = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "wrong horse"})
        assert response.status_code == 401

    def test_me_requires_token(self, client):
        assert client.get("/api/auth/me").status_code == 401


class TestUserRoles:
    def test_admin_promotes_user(self, client, admin_headers):
        user = client.get("/api/auth/me", headers=bearer(signup(client))).json()
        response = client.put(f"/api/users/{user['id']}/role", json={"role": "editor"}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["role"] == "editor"

    def test_editor_cannot_change_roles(self, client, editor_headers):
        assert client.put("/api/users/1/role", json={"role": "administrator"}, headers=editor_headers).status_code == 403

    def test_unknown_role(self, client, admin_headers):
        assert client.put("/api/users/1/role", json={"role": "owner"}, headers=admin_headers).status_code == 422

    def test_missing_user(self, client, admin_headers):
        assert client.put("/api/users/999/role", json={"role": "editor"}, headers=admin_headers).status_code == 404


class TestCreateReview:
    def test_editor_creates_review(self, client, store, editor_headers, make_product):
        product_id = make_product("Kettle")
        response = client.post(
            "/api/reviews",
            json={
                "title": "Great kettle",
                "content": "Boils fast.",
                "categories": [3],
                "meta": {"product_id": str(product_id), "rating": "4.5", "reviewer_name": "<i>Sam</i>"},
            },
            headers=editor_headers,
        )
        assert response.status_code == 201
        review = store.get_document(POSTS, response.json()["id"])
        assert review["type"] == "product_review"
        assert review["slug"] == "great-kettle"
        assert review["status"] == "publish"
        assert review["categories"] == [3]
        assert review["author_id"] is not None
        assert review["meta"] == {"product_id": product_id, "rating": 4, "reviewer_name": "Sam"}

    def test_slugs_are_unique(self, client, store, editor_headers):
        ids = [client.post("/api/reviews", json={"title": "Same"}, headers=editor_headers).json()["id"] for _ in range(3)]
        assert [store.get_document(POSTS, i)["slug"] for i in ids] == ["same", "same-2", "same-3"]

    def test_subscriber_forbidden(self, client, subscriber_headers):
        response = client.post("/api/reviews", json={"title": "Nope"}, headers=subscriber_headers)
        assert response.status_code == 403

    def test_anonymous_unauthorized(self, client):
        assert client.post("/api/reviews", json={"title": "Nope"}).status_code == 401

    def test_unknown_meta_field(self, client, store, editor_headers):
        response = client.post("/api/reviews", json={"title": "x", "meta": {"color": "red"}}, headers=editor_headers)
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "rest_invalid_param"
        assert response.json()["detail"]["field"] == "color"
        assert store.count_documents(POSTS) == 0

    def test_unknown_field(self, client, editor_headers):
        assert client.post("/api/reviews", json={"title": "x", "color": "red"}, headers=editor_headers).status_code == 422

    def test_new_review_is_searchable(self, client, editor_headers):
        client.post(
            "/api/reviews",
            json={"title": "Quiet fan", "meta": {"rating": 5, "reviewer_name": "Sam"}},
            headers=editor_headers,
        )
        body = client.get("/api/reviews?q=quiet&rating=5").json()
        assert [post["title"] for post in body["posts"]] == ["Quiet fan"]


class TestEditReview:
    def test_title_change_updates_slug(self, client, store, editor_headers, make_review):
        review_id = make_review(title="Old")
        response = client.put(f"/api/reviews/{review_id}", json={"title": "New title"}, headers=editor_headers)
        assert response.status_code == 200
        assert response.json()["slug"] == "new-title"
        assert store.get_document(POSTS, review_id)["title"] == "New title"

    def test_meta_merges(self, client, store, editor_headers, make_review):
        review_id = make_review(rating=5, reviewer_name="Sam", product_id=4)
        client.put(f"/api/reviews/{review_id}", json={"meta": {"rating": 2}}, headers=editor_headers)
        assert store.get_document(POSTS, review_id)["meta"] == {"product_id": 4, "rating": 2, "reviewer_name": "Sam"}

    def test_null_fields_are_ignored(self, client, store, editor_headers, make_review):
        review_id = make_review(title="Keep me")
        client.put(f"/api/reviews/{review_id}", json={"title": None, "content": "New"}, headers=editor_headers)
        review = store.get_document(POSTS, review_id)
        assert review["title"] == "Keep me"
        assert review["content"] == "New"

    def test_thumbnail_can_be_cleared(self, client, store, editor_headers, make_review):
        review_id = make_review(title="Keep me", thumbnail="http://cdn.example.com/k.jpg")
        response = client.put(f"/api/reviews/{review_id}", json={"thumbnail": None}, headers=editor_headers)
        assert response.status_code == 200
        review = store.get_document(POSTS, review_id)
        assert review["thumbnail"] is None
        assert review["title"] == "Keep me"

    def test_missing_review(self, client, editor_headers):
        assert client.put("/api/reviews/999", json={"title": "x"}, headers=editor_headers).status_code == 404

    def test_delete(self, client, editor_headers, make_review):
        review_id = make_review()
        assert client.delete(f"/api/reviews/{review_id}", headers=editor_headers).status_code == 200
        assert client.delete(f"/api/reviews/{review_id}", headers=editor_headers).status_code == 404

    def test_subscriber_cannot_delete(self, client, subscriber_headers, make_review):
        review_id = make_review()
        assert client.delete(f"/api/reviews/{review_id}", headers=subscriber_headers).status_code == 403


class TestReviewMeta:
    def test_read(self, client, editor_headers, make_review):
        review_id = make_review(rating=4, reviewer_name="Sam", product_id=2)
        response = client.get(f"/api/reviews/{review_id}/meta", headers=editor_headers)
        assert response.json() == {"product_id": 2, "rating": 4.0, "reviewer_name": "Sam"}

    def test_read_requires_edit_posts(self, client, subscriber_headers, make_review):
        review_id = make_review()
        assert client.get(f"/api/reviews/{review_id}/meta", headers=subscriber_headers).status_code == 403

    def test_patch(self, client, editor_headers, make_review):
        review_id = make_review(rating=4, reviewer_name="Sam")
        response = client.patch(f"/api/reviews/{review_id}/meta", json={"rating": "7"}, headers=editor_headers)
        assert response.status_code == 200
        # out-of-range ratings are stored as empty
        assert response.json()["rating"] is None
        assert response.json()["reviewer_name"] == "Sam"

    def test_patch_rejects_wrong_type(self, client, store, editor_headers, make_review):
        review_id = make_review(rating=4)
        response = client.patch(f"/api/reviews/{review_id}/meta", json={"rating": "abc"}, headers=editor_headers)
        assert response.status_code == 400
        assert store.get_document(POSTS, review_id)["meta"]["rating"] == 4

    def test_patch_overflowing_rating_clears_it(self, client, store, editor_headers, make_review):
        review_id = make_review(rating=4)
        response = client.patch(
            f"/api/reviews/{review_id}/meta",
            content='{"rating": 1e400}',
            headers={**editor_headers, "Content-Type": "application/json"},
        )
        assert response.status_code == 200
        assert response.json()["rating"] is None
        assert store.get_document(POSTS, review_id)["meta"]["rating"] is None

    def test_patch_unauthorized(self, client, make_review):
        review_id = make_review()
        assert client.patch(f"/api/reviews/{review_id}/meta", json={"rating": 3}).status_code == 401


class TestProducts:
    def test_create_and_list(self, client, editor_headers):
        for title in ("Toaster", "Kettle"):
            assert client.post("/api/products", json={"title": title}, headers=editor_headers).status_code == 201
        items = client.get("/api/products").json()["items"]
        assert [item["title"] for item in items] == ["Kettle", "Toaster"]

    def test_subscriber_cannot_create(self, client, subscriber_headers):
        assert client.post("/api/products", json={"title": "x"}, headers=subscriber_headers).status_code == 403


class TestUploads:
    @pytest.fixture(autouse=True)
    def upload_dir(self, monkeypatch, tmp_path):
        monkeypatch.setattr(main, "UPLOAD_DIR", str(tmp_path))
        return tmp_path

    def test_image(self, client, editor_headers, upload_dir):
        response = client.post(
            "/api/uploads",
            files={"file": ("my photo.png", b"\x89PNG", "image/png")},
            headers=editor_headers,
        )
        assert response.status_code == 200
        assert response.json()["url"].endswith("_my-photo.png")
        assert len(list(upload_dir.iterdir())) == 1

    def test_not_an_image(self, client, editor_headers):
        response = client.post("/api/uploads", files={"file": ("a.txt", b"hi", "text/plain")}, headers=editor_headers)
        assert response.status_code == 400

    def test_requires_edit_posts(self, client, subscriber_headers):
        response = client.post("/api/uploads", files={"file": ("a.png", b"x", "image/png")}, headers=subscriber_headers)
        assert response.status_code == 403


class TestHealth:
    def test_health_reports_storage(self, client):
        body = client.get("/health").json()
        assert body["backend"] == "✅ Running"
        assert body["connection_status"] == "Connected"

    def test_root(self, client):
        assert client.get("/").json()["status"] == "ok"
