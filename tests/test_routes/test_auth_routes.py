"""
Route tests for the auth blueprint: profile, directory, roles and
push-token registration.
"""

from app.extensions import db
from app.models.user import User, UserPushToken

BASE = "/api/v1/auth"


class TestProfile:
    """The signed-in user."""

    def test_me(self, client, make_user, auth_headers):
        user = make_user(name="Asha")

        response = client.get(f"{BASE}/me", headers=auth_headers(user))

        assert response.status_code == 200
        assert response.get_json()["data"]["email"] == user.email

    def test_modlist_contains_admins_and_purchasers(self, client, make_user, auth_headers):
        admin = make_user("admin")
        purchaser = make_user("purchaser")
        member = make_user("member")

        response = client.get(f"{BASE}/modlist", headers=auth_headers(member))

        ids = {u["id"] for u in response.get_json()["data"]}
        assert ids == {admin.id, purchaser.id}


class TestRoles:
    """Role changes are admin-only."""

    def test_admin_changes_role(self, client, make_user, auth_headers):
        admin = make_user("admin")
        member = make_user("member")

        response = client.put(
            f"{BASE}/{member.id}/role", json={"role": "owner"}, headers=auth_headers(admin)
        )

        assert response.status_code == 200
        db.session.expire_all()
        assert db.session.get(User, member.id).role == "owner"

    def test_member_cannot_change_roles(self, client, make_user, auth_headers):
        member = make_user("member")

        response = client.put(
            f"{BASE}/{member.id}/role", json={"role": "admin"}, headers=auth_headers(member)
        )

        assert response.status_code == 403

    def test_unknown_role_is_400(self, client, make_user, auth_headers):
        admin = make_user("admin")

        response = client.put(
            f"{BASE}/{admin.id}/role", json={"role": "superuser"}, headers=auth_headers(admin)
        )

        assert response.status_code == 400


class TestPushTokens:
    """Device token registration."""

    def test_register_is_idempotent(self, client, make_user, auth_headers):
        user = make_user()
        headers = auth_headers(user)

        first = client.post(f"{BASE}/push-token", json={"token": "device-1"}, headers=headers)
        second = client.post(f"{BASE}/push-token", json={"token": "device-1"}, headers=headers)

        assert first.get_json()["message"] == "Push token registered"
        assert second.get_json()["message"] == "Push token already registered"
        assert UserPushToken.query.filter_by(user_id=user.id).count() == 1

    def test_remove(self, client, make_user, auth_headers):
        user = make_user(tokens=["device-1"])

        response = client.delete(
            f"{BASE}/push-token", json={"token": "device-1"}, headers=auth_headers(user)
        )

        assert response.get_json()["message"] == "Push token removed"
        assert UserPushToken.query.filter_by(user_id=user.id).count() == 0

    def test_empty_token_is_400(self, client, make_user, auth_headers):
        response = client.post(
            f"{BASE}/push-token", json={"token": ""}, headers=auth_headers(make_user())
        )
        assert response.status_code == 400
