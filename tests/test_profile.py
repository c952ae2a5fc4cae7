"""Profiles: self-service edits, public view, avatars and roles."""

import io

from PIL import Image

from lostfound.models.enums import AppRole, ItemStatus, ItemType
from lostfound.models.profile import Profile
from lostfound.utils.policies import AVATARS_BUCKET
from lostfound.utils.storage_service import public_url


def png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (64, 64), color=(10, 120, 200)).save(buffer, format="PNG")
    return buffer.getvalue()


class TestOwnProfile:
    def test_get_me(self, client, alice, headers_for):
        response = client.get("/profile/me", headers=headers_for(alice))

        assert response.status_code == 200
        body = response.json()
        assert body["username"] == alice.username
        assert body["role"] == "user"

    def test_update_username_and_name(self, client, session, alice, headers_for):
        response = client.patch(
            "/profile/me",
            json={"username": "Alice_W", "full_name": "  Alice Walker "},
            headers=headers_for(alice),
        )

        assert response.status_code == 200
        assert response.json()["username"] == "alice_w"
        session.expire_all()
        profile = session.get(Profile, alice.id)
        assert profile.full_name == "Alice Walker"

    def test_username_taken(self, client, alice, bob, headers_for):
        response = client.patch("/profile/me", json={"username": bob.username}, headers=headers_for(alice))

        assert response.status_code == 409

    def test_invalid_username(self, client, alice, headers_for):
        for bad in ("ab", "no spaces", "x" * 21):
            response = client.patch("/profile/me", json={"username": bad}, headers=headers_for(alice))
            assert response.status_code == 400

    def test_unknown_field(self, client, alice, headers_for):
        response = client.patch("/profile/me", json={"email": "x@example.com"}, headers=headers_for(alice))

        assert response.status_code == 400

    def test_cannot_promote_self(self, client, session, alice, headers_for):
        response = client.patch("/profile/me", json={"role": "admin"}, headers=headers_for(alice))

        assert response.status_code == 403
        session.expire_all()
        assert session.get(Profile, alice.id).role == AppRole.USER

    def test_stats(self, client, session, alice, bob, make_item, headers_for):
        make_item(alice)
        make_item(alice, status=ItemStatus.ARCHIVED)
        bob_item = make_item(bob)
        client.post(
            "/claims/create",
            json={"item_id": str(bob_item.id), "message": "mine"},
            headers=headers_for(alice),
        )

        response = client.get("/profile/me/stats", headers=headers_for(alice))

        assert response.json() == {"items_submitted": 2, "claims_made": 1}

    def test_my_items_include_every_status(self, client, alice, make_item, headers_for):
        make_item(alice, title="Lost Phone", item_type=ItemType.LOST, status=ItemStatus.ARCHIVED)
        make_item(alice, title="Found Gloves", item_type=ItemType.FOUND)

        body = client.get("/profile/me/items", headers=headers_for(alice)).json()

        assert [i["title"] for i in body["lost_items"]] == ["Lost Phone"]
        assert [i["title"] for i in body["found_items"]] == ["Found Gloves"]


class TestPublicProfile:
    def test_shows_only_visible_items(self, client, alice, make_item):
        make_item(alice, title="Found Gloves", item_type=ItemType.FOUND)
        make_item(alice, title="Lost Phone", item_type=ItemType.LOST, status=ItemStatus.CLAIMED)

        body = client.get(f"/profile/{alice.id}").json()

        assert body["user"]["username"] == alice.username
        assert "created_at" in body["user"]
        assert [i["title"] for i in body["found_items"]] == ["Found Gloves"]
        assert body["lost_items"] == []

    def test_unknown_user(self, client, random_id):
        assert client.get(f"/profile/{random_id}").status_code == 404


class TestAvatar:
    def test_upload_replaces_old_avatar(self, client, session, alice, headers_for, fake_s3):
        old_path = f"{alice.id}/1.webp"
        alice.avatar_url = public_url(AVATARS_BUCKET, old_path)
        session.add(alice)
        session.commit()

        response = client.post(
            "/profile/me/avatar",
            files={"image": ("me.png", png_bytes(), "image/png")},
            headers=headers_for(alice),
        )

        assert response.status_code == 200
        bucket, key, _, _ = fake_s3.uploads[0]
        assert bucket == AVATARS_BUCKET
        assert response.json()["avatar_url"] == public_url(AVATARS_BUCKET, key)
        assert fake_s3.deleted == [(AVATARS_BUCKET, old_path)]

    def test_rejects_non_images(self, client, alice, headers_for, fake_s3):
        response = client.post(
            "/profile/me/avatar",
            files={"image": ("me.txt", b"not an image", "text/plain")},
            headers=headers_for(alice),
        )

        assert response.status_code == 400
        assert fake_s3.uploads == []


class TestRoles:
    def test_promotion_applies_to_existing_session(self, client, alice, admin_user, headers_for):
        alice_headers = headers_for(alice)
        assert client.get("/admin/stats", headers=alice_headers).status_code == 403

        response = client.patch(
            f"/admin/users/{alice.id}/role", json={"role": "admin"}, headers=headers_for(admin_user)
        )
        assert response.status_code == 200

        # the token still says "user"; the stored role is what counts
        assert client.get("/admin/stats", headers=alice_headers).status_code == 200
