"""
Tests for the notification dispatcher and its transports.

The push and mail transports are the fakes from ``conftest``; the
dispatcher, recipient resolution and result aggregation are real.
"""

import logging

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.config import TestingConfig
from app.models.user import User
from app.services import recipient_service
from app.services.mail_client import MailClient, MailNotConfiguredError
from app.services.notification_service import NotificationDispatcher, get_dispatcher
from app.services.push_client import PushClient
from app.services.recipient_service import EmailRecipient


class _UnavailableQuery:
    """Stands in for ``User.query`` while the database is unreachable."""

    def filter(self, *args, **kwargs):
        raise SQLAlchemyError("database is locked")


class TestSendPush:
    """Push delivery outcomes."""

    def test_empty_token_set_is_not_an_error(self, app, push_client):
        result = get_dispatcher().send_push([], "Title", "Body")
        assert result.success_count == 0
        assert result.failure_count == 0
        assert push_client.sent == []

    def test_tokens_are_deduplicated(self, app, push_client):
        result = get_dispatcher().send_push(["a", "b", "a", ""], "Title", "Body")
        assert result.success_count == 2
        assert sorted(push_client.tokens_sent()) == ["a", "b"]

    def test_per_token_failures_are_reported(self, app, push_client):
        push_client.failing = {"stale"}
        result = get_dispatcher().send_push(["ok", "stale"], "Title", "Body")
        assert result.success_count == 1
        assert result.failure_count == 1
        failed = [r for r in result.results if not r.success]
        assert failed[0].token == "stale"

    def test_payload_values_become_strings(self, app, push_client):
        get_dispatcher().send_push(["a"], "T", "B", {"count": 3, "ok": True})
        assert push_client.sent[0]["data"] == {"count": "3", "ok": "True"}

    def test_provider_error_fails_every_token(self, app, push_client):
        push_client.raise_error = RuntimeError("quota exceeded")
        result = get_dispatcher().send_push(["a", "b"], "T", "B")
        assert result.failure_count == 2
        assert all("quota exceeded" in r.error for r in result.results)

    def test_disabled_client_reports_failures(self, app, mail_client):
        dispatcher = NotificationDispatcher(
            PushClient.disabled("no credentials"), mail_client
        )
        result = dispatcher.send_push(["a"], "T", "B")
        assert result.failure_count == 1
        assert "no credentials" in result.results[0].error


class TestSendEmailBatch:
    """Concurrent email fan-out."""

    def test_all_recipients_attempted(self, app, mail_client):
        mail_client.failing = {"down@example.com"}
        recipients = [
            EmailRecipient("a@example.com", "A"),
            EmailRecipient("down@example.com", "Down"),
            EmailRecipient("b@example.com", "B"),
        ]

        result = get_dispatcher().send_email_batch(recipients, "Subject", "Hi {name}")

        assert result.sent_count == 2
        assert result.failed_count == 1
        assert result.failures[0].address == "down@example.com"
        assert "connection refused" in result.failures[0].error_message
        assert {m["to"] for m in mail_client.sent} == {"a@example.com", "b@example.com"}

    def test_body_is_personalized(self, app, mail_client):
        get_dispatcher().send_email_batch(
            [EmailRecipient("a@example.com", "Asha")], "Subject", "Hello {name},"
        )
        assert mail_client.sent[0]["body"] == "Hello Asha,"

    def test_no_recipients(self, app, mail_client):
        result = get_dispatcher().send_email_batch([], "Subject", "Body")
        assert result.sent_count == 0
        assert mail_client.sent == []


class TestNotify:
    """Resolution plus both channels."""

    def test_user_with_zero_tokens_still_succeeds(
        self, app, make_user, push_client, mail_client
    ):
        user = make_user(tokens=[])

        result = get_dispatcher().notify(
            [user.id], title="T", body="B", subject="S", email_body="Hello {name}"
        )

        assert result.ok
        assert push_client.sent == []
        assert len(mail_client.messages_to(user.email)) == 1

    def test_partial_failure_is_reported_not_raised(
        self, app, make_user, push_client
    ):
        user = make_user(tokens=["stale"])
        push_client.failing = {"stale"}

        result = get_dispatcher().notify([user.id], title="T", body="B")

        assert not result.ok
        assert "1 push" in result.error
        assert result.detail["push"].failure_count == 1

    def test_email_only_sent_with_subject_and_body(
        self, app, make_user, mail_client
    ):
        user = make_user(tokens=["tok"])
        get_dispatcher().notify([user.id], title="T", body="B")
        assert mail_client.sent == []

    def test_notify_role(self, app, make_user, push_client):
        make_user("admin", tokens=["admin-tok"])
        make_user("member", tokens=["member-tok"])

        result = get_dispatcher().notify_role("admin", title="T", body="B")

        assert result.ok
        assert push_client.tokens_sent() == ["admin-tok"]

    def test_store_failure_yields_no_deliveries(
        self, app, make_user, push_client, mail_client, monkeypatch, caplog
    ):
        user = make_user(tokens=["tok"])
        monkeypatch.setattr(User, "query", _UnavailableQuery())

        with caplog.at_level(logging.ERROR):
            result = get_dispatcher().notify(
                [user.id], title="T", body="B", subject="S", email_body="Hi"
            )

        # Nothing resolved means nothing attempted, which is not a failure.
        assert result.ok
        assert push_client.sent == []
        assert mail_client.sent == []
        assert "Recipient lookup failed" in caplog.text

    def test_unexpected_error_aborts_with_failed_result(
        self, app, make_user, push_client, monkeypatch
    ):
        user = make_user(tokens=["tok"])

        def explode(identities):
            raise RuntimeError("resolver crashed")

        monkeypatch.setattr(recipient_service, "resolve_contact_endpoints", explode)

        result = get_dispatcher().notify([user.id], title="Allocation approved", body="B")

        assert not result.ok
        assert "aborted" in result.error
        assert "resolver crashed" in result.error
        assert push_client.sent == []


class TestTransports:
    """Construction of the real transports never raises."""

    def test_push_client_without_credentials_is_disabled(self):
        client = PushClient.from_service_account("")
        assert not client.enabled
        assert "not set" in client.init_result.reason

    def test_push_client_with_bad_json_is_disabled(self):
        client = PushClient.from_service_account("{not json")
        assert not client.enabled
        assert "invalid" in client.init_result.reason

    def test_disabled_push_client_refuses_to_send(self):
        with pytest.raises(RuntimeError):
            PushClient.disabled("off").send_multicast(["a"], "T", "B", {})

    def test_mail_client_without_server_raises_on_send(self):
        client = MailClient.from_config(
            {key: getattr(TestingConfig, key) for key in dir(TestingConfig) if key.isupper()}
        )
        assert not client.enabled
        with pytest.raises(MailNotConfiguredError):
            client.send("a@example.com", "S", "B")
