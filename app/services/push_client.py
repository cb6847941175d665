"""
Push client — Firebase Cloud Messaging transport.

The client is built once by the application factory from the
``FIREBASE_SERVICE_ACCOUNT_JSON`` setting and handed to the
notification dispatcher.  Construction never raises: a missing or
broken service account produces a *disabled* client whose
``init_result`` explains why, and the dispatcher reports every send
through it as a failure.

Each client registers its own named Firebase app, so several
application instances (for example in tests) do not share SDK state.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

import firebase_admin
from firebase_admin import credentials, messaging
from firebase_admin import exceptions as firebase_exceptions

logger = logging.getLogger(__name__)

# FCM accepts at most 500 tokens per multicast request.
_MAX_TOKENS_PER_REQUEST = 500

_DEFAULT_APP_NAME = "tagit-push"


@dataclass(frozen=True)
class PushInitResult:
    """Whether the push transport is usable, and if not, why."""

    enabled: bool
    reason: str = ""


@dataclass
class TokenResult:
    """Delivery outcome for a single device token."""

    token: str
    success: bool
    message_id: str | None = None
    error: str | None = None


class PushClient:
    """
    Thin wrapper around ``firebase_admin.messaging``.

    Usage::

        client = PushClient.from_service_account(raw_json)
        if client.enabled:
            results = client.send_multicast(tokens, "Title", "Body", {})
    """

    def __init__(
        self,
        firebase_app: Any = None,
        init_result: PushInitResult | None = None,
    ) -> None:
        self._app = firebase_app
        self.init_result = init_result or PushInitResult(
            enabled=firebase_app is not None,
            reason="" if firebase_app is not None else "no Firebase app",
        )

    @classmethod
    def disabled(cls, reason: str) -> "PushClient":
        """Build a client that reports every send as failed."""
        logger.warning("Push notifications disabled: %s", reason)
        return cls(None, PushInitResult(enabled=False, reason=reason))

    @classmethod
    def from_service_account(
        cls,
        raw_json: str,
        app_name: str = _DEFAULT_APP_NAME,
    ) -> "PushClient":
        """
        Initialize Firebase from a service-account JSON document.

        Args:
            raw_json: The service account as a JSON string.  Private
                      keys pasted into env files often carry literal
                      ``\\n`` sequences; those are turned back into
                      newlines.
            app_name: Name of the Firebase app to create or reuse.

        Returns:
            An enabled client, or a disabled one if anything failed.
        """
        if not raw_json:
            return cls.disabled("FIREBASE_SERVICE_ACCOUNT_JSON not set")

        try:
            service_account = json.loads(raw_json)
        except json.JSONDecodeError as exc:
            return cls.disabled(f"service account JSON is invalid ({exc.msg})")
        if not isinstance(service_account, dict):
            return cls.disabled("service account JSON is not an object")

        private_key = service_account.get("private_key")
        if isinstance(private_key, str) and "\\n" in private_key:
            service_account["private_key"] = private_key.replace("\\n", "\n")

        try:
            firebase_app = firebase_admin.get_app(app_name)
        except ValueError:
            try:
                certificate = credentials.Certificate(service_account)
                firebase_app = firebase_admin.initialize_app(
                    certificate, name=app_name
                )
            except (ValueError, firebase_exceptions.FirebaseError) as exc:
                return cls.disabled(f"Firebase initialization failed ({exc})")

        logger.info("Firebase push client initialized (app=%s)", app_name)
        return cls(firebase_app, PushInitResult(enabled=True))

    @property
    def enabled(self) -> bool:
        return self.init_result.enabled

    def send_multicast(
        self,
        tokens: list[str],
        title: str,
        body: str,
        data: dict[str, str],
    ) -> list[TokenResult]:
        """
        Send one notification to many device tokens.

        Tokens are sent in chunks of 500 (the FCM request limit).

        Returns:
            One ``TokenResult`` per token, in input order.

        Raises:
            RuntimeError: If the client is disabled.
            firebase_admin.exceptions.FirebaseError: If a request fails
                as a whole (auth, quota, transport).
        """
        if not self.enabled:
            raise RuntimeError(f"push client disabled: {self.init_result.reason}")

        results: list[TokenResult] = []
        for start in range(0, len(tokens), _MAX_TOKENS_PER_REQUEST):
            chunk = tokens[start : start + _MAX_TOKENS_PER_REQUEST]
            message = messaging.MulticastMessage(
                tokens=chunk,
                notification=messaging.Notification(title=title, body=body),
                data=data or None,
            )
            response = messaging.send_each_for_multicast(message, app=self._app)
            for token, send_response in zip(chunk, response.responses):
                results.append(
                    TokenResult(
                        token=token,
                        success=send_response.success,
                        message_id=send_response.message_id,
                        error=(
                            str(send_response.exception)
                            if send_response.exception
                            else None
                        ),
                    )
                )
        return results
