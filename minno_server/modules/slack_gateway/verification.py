"""
Slack webhook signature verification.

This module handles verification of incoming Slack webhook requests to ensure
they are authentic and haven't been tampered with or replayed.
"""

import hashlib
import hmac
import time
from typing import Callable, Optional

from minno_server.errors import AuthError
from minno_server.utils.logging import get_logger

logger = get_logger("slack.verification")

SIGNATURE_VERSION = "v0"

# Requests older (or newer) than this are treated as replays
MAX_REQUEST_AGE = 60 * 5


def compute_slack_signature(signing_secret: str, timestamp: str, body: bytes) -> str:
    """
    Compute the signature Slack sends in X-Slack-Signature.

    Args:
        signing_secret: Slack app signing secret
        timestamp: X-Slack-Request-Timestamp header value
        body: Raw request body bytes

    Returns:
        str: ``v0=`` followed by the hex HMAC-SHA256 digest
    """
    basestring = f"{SIGNATURE_VERSION}:{timestamp}:".encode("utf-8") + body
    digest = hmac.new(signing_secret.encode("utf-8"), basestring, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


class SlackSignatureVerifier:
    """
    Verifies Slack request signatures.

    Timestamp freshness is checked before the signature since it is cheaper.
    """

    def __init__(
        self,
        signing_secret: str,
        max_age: int = MAX_REQUEST_AGE,
        clock: Callable[[], float] = time.time,
    ):
        self._signing_secret = signing_secret
        self._max_age = max_age
        self._clock = clock

    def verify(self, timestamp: Optional[str], signature: Optional[str], body: bytes) -> None:
        """
        Verify a Slack webhook request.

        Args:
            timestamp: X-Slack-Request-Timestamp header value
            signature: X-Slack-Signature header value
            body: Raw request body bytes

        Raises:
            AuthError: 400 for missing headers or a stale timestamp,
                401 for a signature that does not match
        """
        if not timestamp or not signature:
            logger.warning("Missing Slack signature headers")
            raise AuthError("Missing Slack signature headers", status_code=400)

        try:
            request_time = int(timestamp)
        except ValueError:
            logger.warning("Malformed request timestamp", timestamp=timestamp)
            raise AuthError("Invalid request timestamp", status_code=400)

        current_time = int(self._clock())
        if abs(current_time - request_time) > self._max_age:
            logger.warning("Request timestamp too old", timestamp=timestamp, current_time=current_time)
            raise AuthError("Request timestamp is too old", status_code=400)

        if not self._signing_secret:
            logger.error("Slack signing secret not configured, rejecting request")
            raise AuthError("Invalid signature", status_code=401)

        expected_signature = compute_slack_signature(self._signing_secret, timestamp, body)

        # Compare bytes so mismatched lengths or non-ASCII input return False instead of raising
        if not hmac.compare_digest(expected_signature.encode("utf-8"), signature.encode("utf-8")):
            logger.warning("Invalid Slack signature")
            raise AuthError("Invalid signature", status_code=401)
