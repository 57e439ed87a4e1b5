"""
External collaborator interfaces consumed by the kernel.

The kernel never renders templates, delivers messages or implements a
signature algorithm itself.  It talks to these capabilities through the
Protocols below, injected at service construction time.
"""

from __future__ import annotations

import hmac
from typing import Any, Protocol, runtime_checkable

from contract_kernel.logging_config import get_logger
from contract_kernel.utils.hashing import hash_payload

logger = get_logger("domain.collaborators")


@runtime_checkable
class TemplateRenderer(Protocol):
    """Renders contract body text from a template id and variable values."""

    def render(self, template_id: str, variables: dict[str, Any]) -> str:
        ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Fire-and-forget delivery of lifecycle, workflow and renewal events."""

    def notify(self, event: str, recipients: list[str], payload: dict[str, Any]) -> None:
        ...


@runtime_checkable
class SignatureVerifier(Protocol):
    """Hashes and validates a signed payload.  Opaque to the workflow engine."""

    def compute_hash(self, payload: dict[str, Any]) -> str:
        ...

    def verify(self, payload: dict[str, Any], expected_hash: str) -> bool:
        ...


class Sha256SignatureVerifier:
    """SHA-256 over the canonical JSON form of the payload."""

    def compute_hash(self, payload: dict[str, Any]) -> str:
        return hash_payload(payload)

    def verify(self, payload: dict[str, Any], expected_hash: str) -> bool:
        return hmac.compare_digest(self.compute_hash(payload), expected_hash)


class LoggingNotificationDispatcher:
    """Default dispatcher: records the notification in the structured log."""

    def notify(self, event: str, recipients: list[str], payload: dict[str, Any]) -> None:
        logger.info(
            "notification_dispatched",
            extra={
                "notification_event": event,
                "recipient_count": len(recipients),
                "notification_payload": payload,
            },
        )


class RecordingNotificationDispatcher:
    """Keeps every notification in memory; used by tests and dry runs."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, list[str], dict[str, Any]]] = []

    def notify(self, event: str, recipients: list[str], payload: dict[str, Any]) -> None:
        self.sent.append((event, list(recipients), dict(payload)))

    def events(self) -> list[str]:
        return [event for event, _, _ in self.sent]


def dispatch_safely(
    dispatcher: NotificationDispatcher,
    event: str,
    recipients: list[str],
    payload: dict[str, Any],
) -> bool:
    """
    Deliver through ``dispatcher`` without letting delivery failures escape.

    Returns False (and logs) when the dispatcher raised.
    """
    if not recipients:
        return False
    try:
        dispatcher.notify(event, recipients, payload)
        return True
    except Exception:
        logger.exception(
            "notification_dispatch_failed",
            extra={"notification_event": event, "recipient_count": len(recipients)},
        )
        return False
