"""
HMAC-SHA256 signatures for outbound fiscal (WEB-SRM) requests.

The signed message is `v1.{unix timestamp}.{body}`; the receiver rejects
timestamps older than the replay window.
"""

import hashlib
import hmac
import json
import time
from typing import Any

from shared.config.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_VERSION = "v1"
REPLAY_WINDOW_SECONDS = 300


def canonical_json(payload: dict[str, Any]) -> bytes:
    """Sorted keys, no whitespace: the exact bytes that are signed and sent."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode()


class RequestSigner:

    def __init__(self, secret: str, max_age: int = REPLAY_WINDOW_SECONDS):
        self._key = secret.encode()
        self.max_age = max_age

    def signature(self, body: bytes, timestamp: int) -> str:
        message = b".".join([SIGNATURE_VERSION.encode(), str(timestamp).encode(), body])
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    def get_headers(self, body: bytes) -> dict[str, str]:
        timestamp = int(time.time())
        return {
            "X-Signature": self.signature(body, timestamp),
            "X-Timestamp": str(timestamp),
            "X-Signature-Version": SIGNATURE_VERSION,
        }

    def verify(self, body: bytes, timestamp: int | str, signature: str) -> bool:
        try:
            ts = int(timestamp)
        except (TypeError, ValueError):
            return False
        if abs(time.time() - ts) > self.max_age:
            logger.warning("Stale request signature", timestamp=ts)
            return False
        return hmac.compare_digest(self.signature(body, ts), signature)
