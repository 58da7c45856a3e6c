import hashlib
import hmac
import json
import logging
import time
from typing import Any, Mapping, Optional, Sequence, Union

from ._constants import DEFAULT_WEBHOOK_TOLERANCE, SIGNATURE_HEADER
from .errors import WebhookVerificationError
from .types import WebhookEvent

logger = logging.getLogger("mappa")

HeaderValue = Union[str, Sequence[str], None]


def _header_value(headers: Mapping[str, HeaderValue], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() != name.lower():
            continue
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        return value or None
    return None


def _parse_signature(header: str) -> tuple[str, str]:
    """Split ``t=<ts>,v1=<hex>`` into its timestamp and signature."""
    parts: dict[str, str] = {}
    for item in header.split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip() and value.strip():
            parts[key.strip()] = value.strip()
    if "t" not in parts or "v1" not in parts:
        raise WebhookVerificationError("Invalid signature format")
    return parts["t"], parts["v1"]


def _to_bytes(payload: Union[str, bytes]) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return bytes(payload)


def _to_text(payload: Union[str, bytes]) -> str:
    if isinstance(payload, bytes):
        return payload.decode("utf-8")
    return payload


class WebhooksAPI:
    """Verification and parsing of inbound webhooks. Accessed via ``client.webhooks``.

    Works on the raw request body; re-serialized JSON will not verify.
    """

    def verify_signature(
        self,
        payload: Union[str, bytes],
        headers: Mapping[str, HeaderValue],
        secret: str,
        *,
        tolerance: int = DEFAULT_WEBHOOK_TOLERANCE,
    ) -> bool:
        """Check the ``mappa-signature`` header of a webhook delivery.

        The signature is an HMAC-SHA256 of ``"{t}.{payload}"`` keyed with
        ``secret``, hex encoded. ``t`` must lie within ``tolerance`` seconds
        of the local clock.

        Returns True. Raises :class:`WebhookVerificationError` otherwise.
        """
        header = _header_value(headers, SIGNATURE_HEADER)
        if not header:
            raise WebhookVerificationError(f"Missing {SIGNATURE_HEADER} header")

        timestamp, signature = _parse_signature(header)
        try:
            ts = int(timestamp)
        except ValueError:
            raise WebhookVerificationError("Invalid signature timestamp") from None

        if abs(int(time.time()) - ts) > tolerance:
            raise WebhookVerificationError("Signature timestamp outside tolerance")

        signed = timestamp.encode("utf-8") + b"." + _to_bytes(payload)
        expected = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        received = signature.encode("utf-8", "surrogateescape")
        if not hmac.compare_digest(expected.encode("ascii"), received):
            logger.debug("Webhook signature mismatch (t=%s)", timestamp)
            raise WebhookVerificationError("Invalid signature")
        return True

    def parse_event(self, payload: Union[str, bytes]) -> WebhookEvent:
        """Parse a raw webhook body into a :class:`WebhookEvent`."""
        try:
            raw: Any = json.loads(_to_text(payload))
        except ValueError as exc:
            raise WebhookVerificationError(f"Invalid webhook payload: {exc}") from exc

        if not isinstance(raw, dict):
            raise WebhookVerificationError("Invalid webhook payload: not an object")
        event_type = raw.get("type")
        timestamp = raw.get("timestamp", raw.get("createdAt"))
        if not isinstance(event_type, str):
            raise WebhookVerificationError("Invalid webhook payload: type must be a string")
        if not isinstance(timestamp, str):
            raise WebhookVerificationError("Invalid webhook payload: timestamp must be a string")

        event_id = raw.get("id")
        return WebhookEvent(
            type=event_type,
            timestamp=timestamp,
            data=raw.get("data"),
            id=event_id if isinstance(event_id, str) else None,
        )
