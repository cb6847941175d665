"""
Tests for user_service, auth_service and the user-facing CLI commands.
"""

import pytest

from app.cli import create_user_command, issue_token_command, sweep_allocations_command
from app.exceptions import NotFoundError, ValidationError
from app.models.identifiers import new_object_id
from app.services import auth_service, user_service


class TestProvisionUser:
    """Creating users."""

    def test_email_is_normalized(self, app):
        user = user_service.provision_user("  Asha@Example.COM ", "Asha", "owner")

        assert user.email == "asha@example.com"
        assert user.role == "owner"
        assert user_service.get_user_by_email("ASHA@example.com") is user

    def test_duplicate_email_is_rejected(self, app):
        user_service.provision_user("asha@example.com", "Asha")

        with pytest.raises(ValidationError):
            user_service.provision_user("asha@example.com", "Someone Else")

    def test_unknown_role_is_rejected(self, app):
        with pytest.raises(ValidationError):
            user_service.provision_user("asha@example.com", "Asha", "superuser")


class TestGetActiveUserOrRaise:
    """Resolving user references from request bodies."""

    def test_returns_active_user(self, app, make_user):
        user = make_user()
        assert user_service.get_active_user_or_raise(user.id.upper(), "owner") is user

    def test_missing_id_names_the_field(self, app):
        with pytest.raises(ValidationError, match="manager is required"):
            user_service.get_active_user_or_raise(None, "manager")

    def test_malformed_id(self, app):
        with pytest.raises(ValidationError, match="Invalid owner id"):
            user_service.get_active_user_or_raise("asha", "owner")

    def test_unknown_user(self, app):
        with pytest.raises(NotFoundError):
            user_service.get_active_user_or_raise(new_object_id())

    def test_inactive_user_is_not_found(self, app, make_user):
        user = make_user(is_active=False)
        with pytest.raises(NotFoundError):
            user_service.get_active_user_or_raise(user.id)


class TestPushTokens:
    """Token registration is idempotent per user."""

    def test_register_and_remove(self, app, make_user):
        user = make_user()

        assert user_service.register_push_token(user, " device-1 ") is True
        assert user_service.register_push_token(user, "device-1") is False
        assert user.token_values == ["device-1"]
        assert user_service.remove_push_token(user, "device-1") is True
        assert user_service.remove_push_token(user, "device-1") is False

    def test_oversized_token_is_rejected(self, app, make_user):
        with pytest.raises(ValidationError):
            user_service.register_push_token(make_user(), "x" * 600)


class TestAccessTokens:
    """Signed bearer tokens."""

    def test_round_trip(self, app, make_user):
        user = make_user()
        token = auth_service.generate_access_token(user)
        assert auth_service.verify_access_token(token) is user

    def test_tampered_token(self, app, make_user):
        token = auth_service.generate_access_token(make_user())
        assert auth_service.verify_access_token(token + "x") is None

    def test_expired_token(self, app, make_user):
        token = auth_service.generate_access_token(make_user())
        app.config["ACCESS_TOKEN_MAX_AGE"] = -1
        assert auth_service.verify_access_token(token) is None


class TestCliCommands:
    """``flask create-user``, ``issue-token`` and ``sweep-allocations``."""

    def test_create_user_and_issue_token(self, app):
        runner = app.test_cli_runner()

        created = runner.invoke(
            create_user_command, ["lead@example.com", "Team Lead", "--role", "admin", "--manager"]
        )
        issued = runner.invoke(issue_token_command, ["lead@example.com"])

        assert created.exit_code == 0
        assert "Created user lead@example.com (admin)" in created.output
        user = user_service.get_user_by_email("lead@example.com")
        assert user.is_manager is True
        assert user.last_login is not None
        assert auth_service.verify_access_token(issued.output.strip()) is user

    def test_create_duplicate_user_fails(self, app, make_user):
        user = make_user()

        result = app.test_cli_runner().invoke(create_user_command, [user.email, "Again"])

        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_issue_token_for_unknown_user(self, app):
        result = app.test_cli_runner().invoke(issue_token_command, ["ghost@example.com"])
        assert result.exit_code == 1

    def test_sweep_reports_counts(self, app):
        result = app.test_cli_runner().invoke(sweep_allocations_command)

        assert result.exit_code == 0
        assert "Completed: 0" in result.output
