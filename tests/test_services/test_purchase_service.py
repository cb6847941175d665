"""
Tests for purchase_service: purchase requests and their notifications.
"""

from decimal import Decimal

import pytest

from app.exceptions import AuthorizationError, ValidationError
from app.services import purchase_service


@pytest.fixture()
def people(app, make_user):
    """A requester, their manager, a purchaser and an admin."""
    return {
        "requester": make_user(name="Asha", tokens=["tok-requester"]),
        "manager": make_user(name="Meera", is_manager=True, tokens=["tok-manager"]),
        "purchaser": make_user("purchaser", tokens=["tok-purchaser"]),
        "admin": make_user("admin", tokens=["tok-admin"]),
    }


def _create(people, **extra):
    return purchase_service.create_request(
        {
            "asset_type": "Laptop",
            "asset_name": "ThinkPad X1",
            "quantity": 2,
            "asset_price": "1499.5",
            "manager": people["manager"].id,
            **extra,
        },
        people["requester"],
    )


class TestCreateRequest:
    """Creating purchase requests."""

    def test_defaults_to_caller(self, people):
        purchase = _create(people)

        assert purchase.requested_by_id == people["requester"].id
        assert purchase.required_by_id == people["requester"].id
        assert purchase.quantity == 2
        assert purchase.asset_price == Decimal("1499.50")
        assert purchase.manager_approval is None
        assert purchase.request_status is None

    def test_involved_users_then_admins_are_notified(self, people, push_client, mail_client):
        _create(people)

        involved, admins = push_client.sent
        assert sorted(involved["tokens"]) == ["tok-manager", "tok-requester"]
        assert admins["tokens"] == ["tok-admin"]
        assert involved["data"] == {"type": "purchase:create"}
        (message,) = mail_client.messages_to(people["admin"].email)
        assert message["body"].startswith("Hello Admin,")
        assert message["subject"] == "TAGit: New Purchase Request"

    def test_admin_who_is_involved_is_notified_once(self, people, push_client):
        purchase_service.create_request({"asset_type": "Monitor"}, people["admin"])

        assert push_client.tokens_sent() == ["tok-admin"]

    @pytest.mark.parametrize(
        "extra",
        [
            {"asset_type": ""},
            {"quantity": 0},
            {"quantity": True},
            {"asset_price": "cheap"},
            {"asset_price": -1},
            {"purchased_on": "yesterday"},
        ],
    )
    def test_invalid_fields(self, people, extra):
        with pytest.raises(ValidationError):
            _create(people, **extra)

    def test_notification_failure_does_not_fail_request(self, people, push_client):
        push_client.raise_error = RuntimeError("FCM unavailable")
        assert _create(people).id


class TestManagerDecision:
    """Recording the manager's approval."""

    def test_assigned_manager_approves(self, people):
        purchase = _create(people)

        result = purchase_service.record_manager_decision(
            purchase.id, {"manager_approval": True}, people["manager"]
        )

        assert result.manager_approval is True

    def test_other_user_is_refused(self, people, make_user):
        purchase = _create(people)

        with pytest.raises(AuthorizationError):
            purchase_service.record_manager_decision(
                purchase.id, {"manager_approval": True}, make_user(is_manager=True)
            )
        assert purchase.manager_approval is None

    def test_admin_may_decide(self, people):
        purchase = _create(people)

        result = purchase_service.record_manager_decision(
            purchase.id, {"manager_approval": False}, people["admin"]
        )

        assert result.manager_approval is False

    def test_unassigned_request_is_claimed_by_a_manager(self, people, make_user):
        purchase = _create(people, manager=None)
        other_manager = make_user(is_manager=True)

        result = purchase_service.record_manager_decision(
            purchase.id, {"manager_approval": True}, other_manager
        )

        assert result.manager_id == other_manager.id

    def test_unassigned_request_refuses_non_managers(self, people):
        purchase = _create(people, manager=None)

        with pytest.raises(AuthorizationError):
            purchase_service.record_manager_decision(
                purchase.id, {"manager_approval": True}, people["requester"]
            )

    def test_decision_must_be_boolean(self, people):
        purchase = _create(people)

        with pytest.raises(ValidationError):
            purchase_service.record_manager_decision(
                purchase.id, {"manager_approval": "yes"}, people["manager"]
            )


class TestUpdateRequest:
    """Purchaser updates and fulfilment."""

    def test_fulfilment_stamps_acceptance_time(self, people):
        purchase = _create(people)

        result = purchase_service.update_request(
            purchase.id, {"request_status": True, "purchased_on": "25/12/2024"}
        )

        assert result.request_status is True
        assert result.request_accepted_at is not None
        assert result.purchased_on.day == 25

    def test_unknown_fields_are_rejected(self, people):
        purchase = _create(people)

        with pytest.raises(ValidationError):
            purchase_service.update_request(purchase.id, {"manager_approval": True})

    def test_update_notifies(self, people, push_client):
        purchase = _create(people)
        push_client.sent.clear()

        purchase_service.update_request(purchase.id, {"quantity": 3})

        assert push_client.sent[0]["data"] == {"type": "purchase:update"}


class TestQueries:
    """Listing requests."""

    def test_requests_for_user(self, people, make_user):
        purchase = _create(people)

        assert purchase_service.get_requests_for_user(people["requester"].id) == [purchase]
        assert purchase_service.get_requests_for_user(make_user().id) == []
        assert purchase_service.get_all_requests() == [purchase]
