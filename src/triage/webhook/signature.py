"""GitHub webhook signature verification.

GitHub signs every delivery with HMAC-SHA256 over the raw request body
using the webhook secret and sends the result in the
``x-hub-signature-256`` header as ``sha256=<hex digest>``.
"""

import hashlib
import hmac
from typing import Optional

SIGNATURE_HEADER = "x-hub-signature-256"
SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    """Compute the ``sha256=<hex>`` signature GitHub sends for a body.

    Args:
        body: Raw request body bytes.
        secret: Shared webhook secret.

    Returns:
        The formatted signature string.
    """
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check a delivery signature in constant time.

    A missing header, a non-ASCII header or a header of a different length
    than the expected digest is treated as a mismatch and never raises.

    Args:
        body: Raw request body bytes.
        signature: Value of the x-hub-signature-256 header.
        secret: Shared webhook secret.

    Returns:
        True if the signature matches the body, False otherwise.
    """
    if not signature:
        return False

    expected = compute_signature(body, secret).encode("utf-8")
    provided = signature.encode("utf-8", errors="replace")

    return hmac.compare_digest(expected, provided)
