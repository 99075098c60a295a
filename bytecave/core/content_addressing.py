"""
Content addressing for ByteCave payloads.

Every blob is identified by a digest of its bytes. Nodes compute the same
digest on receipt, so the client-side CID doubles as an integrity check.
"""

import hashlib

CID_PREFIX = "baf"
CID_HEX_LENGTH = 56  # hex chars of the digest kept in the CID


def compute_cid(data: bytes) -> str:
    """
    Compute the content id for a payload.

    Args:
        data: Raw payload bytes

    Returns:
        ``"baf"`` followed by the first 56 hex chars of the SHA-256 digest
    """
    return CID_PREFIX + hashlib.sha256(data).hexdigest()[:CID_HEX_LENGTH]


def content_hash(data: bytes) -> str:
    """Full SHA-256 digest in the ``0x``-prefixed form nodes expect in authorizations."""
    return "0x" + hashlib.sha256(data).hexdigest()


def verify_cid(data: bytes, cid: str) -> bool:
    """Check that ``data`` hashes to ``cid``."""
    return compute_cid(data) == cid
