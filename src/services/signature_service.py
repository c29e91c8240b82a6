"""Square webhook signature verification."""

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass

from src.core.config import Settings, get_settings
from src.core.errors import SignatureInvalidError

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


@dataclass(frozen=True)
class SignatureConfig:
    """Shared secret and signed URL for webhook verification."""

    secret: str
    notification_url: str = ""

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SignatureConfig":
        """Build the verifier config from application settings."""
        settings = settings or get_settings()
        return cls(
            secret=settings.square_webhook_signature_key,
            notification_url=settings.square_webhook_notification_url,
        )


def compute_signature(raw_body: bytes, secret: str, notification_url: str = "") -> str:
    """Compute the base64 HMAC-SHA256 signature for a webhook body.

    Args:
        raw_body: Exact request body bytes.
        secret: Shared webhook signature key.
        notification_url: Signed URL prefix, empty when not used.

    Returns:
        str: Base64-encoded digest.
    """
    signed_payload = notification_url.encode("utf-8") + raw_body
    digest = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(
    raw_body: bytes | None,
    signature_header: str | None,
    secret: str | None,
    notification_url: str = "",
) -> bool:
    """Verify a webhook body against its signature header.

    The HMAC is computed over the exact bytes received, never over a
    re-serialized object. An optional ``sha256=`` prefix on the header is
    ignored. Comparison is constant-time on the base64 text.

    Args:
        raw_body: Exact request body bytes.
        signature_header: Value of the signature header.
        secret: Shared webhook signature key.
        notification_url: Signed URL prefix, empty when not used.

    Returns:
        bool: True only if the signature matches. Malformed input of any
        kind returns False instead of raising.
    """
    if not signature_header or not secret or not isinstance(raw_body, (bytes, bytearray)):
        return False

    provided = signature_header.strip()
    if provided.startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]
    if not provided:
        return False

    try:
        provided_bytes = provided.encode("ascii")
    except UnicodeEncodeError:
        return False

    expected = compute_signature(bytes(raw_body), secret, notification_url)
    return hmac.compare_digest(provided_bytes, expected.encode("ascii"))


class SignatureVerifier:
    """Verifies Square webhook deliveries with an explicit config."""

    def __init__(self, config: SignatureConfig | None = None) -> None:
        """Initialize verifier.

        Args:
            config: Secret and notification URL. Defaults to application settings.
        """
        self.config = config or SignatureConfig.from_settings()

    @property
    def is_configured(self) -> bool:
        """Check whether a signature key is available."""
        return bool(self.config.secret)

    def verify(self, raw_body: bytes, signature_header: str | None) -> bool:
        """Verify a delivery body and its signature header."""
        valid = verify_signature(
            raw_body,
            signature_header,
            self.config.secret,
            self.config.notification_url,
        )
        if not valid:
            logger.warning(
                "Webhook signature rejected (body: %d bytes, header present: %s)",
                len(raw_body or b""),
                bool(signature_header),
            )
        return valid

    def require(self, raw_body: bytes, signature_header: str | None) -> None:
        """Verify a delivery, raising when it cannot be trusted.

        Raises:
            SignatureInvalidError: If the header is missing, no key is
                configured, or the signature does not match.
        """
        if not signature_header:
            logger.warning("Missing Square signature header in webhook request")
            raise SignatureInvalidError("Missing webhook signature")

        if not self.is_configured:
            logger.error("SQUARE_WEBHOOK_SIGNATURE_KEY not configured, rejecting webhook")
            raise SignatureInvalidError("Webhook signature cannot be verified")

        if not self.verify(raw_body, signature_header):
            raise SignatureInvalidError("Invalid webhook signature")
