"""
Notification service — best-effort delivery over push and email.

``NotificationDispatcher`` is built by the application factory with an
explicit push client and mail client and registered on
``app.extensions``.  Services fetch it with ``get_dispatcher()``.

Nothing in this module raises to its caller:

  - ``send_push`` and ``send_email_batch`` always return a result
    object with per-recipient outcomes.
  - ``notify`` / ``notify_role`` wrap resolution plus both channels
    and return a ``SideEffectResult`` which the calling workflow logs
    and discards.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any

from flask import Flask, current_app

from app.services import recipient_service
from app.services.mail_client import MailClient
from app.services.push_client import PushClient, TokenResult
from app.services.recipient_service import EmailRecipient
from app.services.side_effects import SideEffectResult

logger = logging.getLogger(__name__)

# Key under ``app.extensions`` holding the dispatcher.
EXTENSION_KEY = "notification_dispatcher"


# =========================================================================
# Result types
# =========================================================================


@dataclass
class PushResult:
    """Aggregate outcome of a push send."""

    success_count: int = 0
    failure_count: int = 0
    results: list[TokenResult] = field(default_factory=list)


@dataclass
class EmailFailure:
    """A single recipient whose email could not be sent."""

    address: str
    error_message: str


@dataclass
class EmailBatchResult:
    """Aggregate outcome of an email fan-out."""

    sent_count: int = 0
    failed_count: int = 0
    failures: list[EmailFailure] = field(default_factory=list)


# =========================================================================
# Dispatcher
# =========================================================================


class NotificationDispatcher:
    """Sends titled messages to push tokens and email recipients."""

    def __init__(
        self,
        push_client: PushClient,
        mail_client: MailClient,
        max_concurrent_sends: int = 5,
    ) -> None:
        self.push_client = push_client
        self.mail_client = mail_client
        self.max_concurrent_sends = max(1, max_concurrent_sends)

    # -- Push --------------------------------------------------------------

    def send_push(
        self,
        tokens: Iterable[str],
        title: str,
        body: str,
        payload: Mapping[str, Any] | None = None,
    ) -> PushResult:
        """
        Send a push notification to a set of device tokens.

        An empty token set returns a zero result without contacting the
        provider.  A disabled client or a provider error reports every
        token as failed.
        """
        unique_tokens = sorted({token for token in tokens if token})
        if not unique_tokens:
            return PushResult()

        # FCM data payloads must be string -> string.
        data = {str(key): str(value) for key, value in (payload or {}).items()}

        if not self.push_client.enabled:
            reason = self.push_client.init_result.reason
            logger.warning(
                "Push disabled (%s), %d token(s) not notified",
                reason,
                len(unique_tokens),
            )
            return _failed_push(unique_tokens, f"push disabled: {reason}")

        try:
            results = self.push_client.send_multicast(unique_tokens, title, body, data)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.error("Push send failed for %d token(s): %s", len(unique_tokens), exc)
            return _failed_push(unique_tokens, str(exc))

        success_count = sum(1 for result in results if result.success)
        push_result = PushResult(
            success_count=success_count,
            failure_count=len(results) - success_count,
            results=results,
        )
        logger.info("Push '%s' sent %d/%d", title, success_count, len(results))
        if push_result.failure_count:
            logger.warning(
                "Push '%s' failures: %s",
                title,
                [result.error for result in results if not result.success],
            )
        return push_result

    # -- Email -------------------------------------------------------------

    def send_email_batch(
        self,
        recipients: Sequence[EmailRecipient],
        subject: str,
        body: str,
    ) -> EmailBatchResult:
        """
        Email every recipient concurrently and aggregate the outcomes.

        All sends are attempted; each one fails independently.

        Args:
            recipients: Destinations.  ``{name}`` in ``body`` is replaced
                        with each recipient's display name.
            subject:    Subject line.
            body:       Plain-text body.
        """
        if not recipients:
            return EmailBatchResult()

        batch = EmailBatchResult()
        workers = min(self.max_concurrent_sends, len(recipients))

        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_recipient = {
                executor.submit(
                    self.mail_client.send,
                    recipient.address,
                    subject,
                    _personalize(body, recipient),
                    recipient.display_name,
                ): recipient
                for recipient in recipients
            }

            for future in as_completed(future_to_recipient):
                recipient = future_to_recipient[future]
                try:
                    future.result()
                    batch.sent_count += 1
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    batch.failures.append(
                        EmailFailure(address=recipient.address, error_message=str(exc))
                    )

        batch.failed_count = len(batch.failures)
        if batch.failed_count:
            logger.warning(
                "Email '%s': %d sent, %d failed (%s)",
                subject,
                batch.sent_count,
                batch.failed_count,
                ", ".join(f.address for f in batch.failures),
            )
        else:
            logger.info("Email '%s' sent to %d recipient(s)", subject, batch.sent_count)
        return batch

    # -- Audience helpers ----------------------------------------------------

    def notify(
        self,
        identities: Iterable[str],
        *,
        title: str,
        body: str,
        payload: Mapping[str, Any] | None = None,
        subject: str | None = None,
        email_body: str | None = None,
    ) -> SideEffectResult:
        """
        Resolve a group of users and notify them on both channels.

        Email is only sent when both ``subject`` and ``email_body`` are
        given.

        Returns:
            ``ok`` when every attempted delivery succeeded; otherwise an
            error summary.  ``detail`` carries the push and email
            results.
        """
        try:
            endpoints = recipient_service.resolve_contact_endpoints(identities)
            push_result = self.send_push(endpoints.push_tokens, title, body, payload)

            email_result = EmailBatchResult()
            if subject and email_body:
                recipients = sorted(endpoints.emails, key=lambda r: r.address)
                email_result = self.send_email_batch(recipients, subject, email_body)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            return SideEffectResult.failed(f"notification '{title}' aborted: {exc}")

        detail = {"push": push_result, "email": email_result}
        if push_result.failure_count or email_result.failed_count:
            return SideEffectResult.failed(
                f"notification '{title}': {push_result.failure_count} push and "
                f"{email_result.failed_count} email deliveries failed",
                detail,
            )
        return SideEffectResult.succeeded(detail)

    def notify_role(self, role: str, **kwargs: Any) -> SideEffectResult:
        """``notify`` every active user holding ``role``."""
        return self.notify(recipient_service.resolve_role_group(role), **kwargs)


def _failed_push(tokens: list[str], error: str) -> PushResult:
    return PushResult(
        success_count=0,
        failure_count=len(tokens),
        results=[TokenResult(token=t, success=False, error=error) for t in tokens],
    )


def _personalize(body: str, recipient: EmailRecipient) -> str:
    """Fill the ``{name}`` greeting placeholder for one recipient."""
    return body.replace("{name}", recipient.display_name or "there")


# =========================================================================
# Application wiring
# =========================================================================


def init_dispatcher(app: Flask) -> NotificationDispatcher:
    """Build the transports from config and register the dispatcher."""
    push_client = PushClient.from_service_account(
        app.config.get("FIREBASE_SERVICE_ACCOUNT_JSON", "")
    )
    mail_client = MailClient.from_config(app.config)
    dispatcher = NotificationDispatcher(
        push_client,
        mail_client,
        max_concurrent_sends=app.config.get("MAIL_MAX_CONCURRENT_SENDS", 5),
    )
    app.extensions[EXTENSION_KEY] = dispatcher
    return dispatcher


def get_dispatcher() -> NotificationDispatcher:
    """Return the dispatcher registered on the current application."""
    return current_app.extensions[EXTENSION_KEY]
