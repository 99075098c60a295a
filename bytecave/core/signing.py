"""
Storage authorization signing.

Any object with async ``get_address()`` and ``sign_message(message)`` can
act as a signer. :class:`Ed25519Signer` is the bundled implementation,
backed by a key file on disk.
"""

import hashlib
import logging
import os
import secrets
import time
from pathlib import Path
from typing import Optional, Protocol

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from .content_addressing import content_hash
from .types import AuthorizationEnvelope

logger = logging.getLogger(__name__)


class Signer(Protocol):
    async def get_address(self) -> str: ...

    async def sign_message(self, message: str) -> str: ...


def canonical_storage_message(content_hash_hex: str, app_id: str, timestamp: int, nonce: str) -> str:
    """Message a signer must sign to authorize storing a blob."""
    return (
        "ByteCave Storage Request for:\n"
        f"Content Hash: {content_hash_hex}\n"
        f"App ID: {app_id}\n"
        f"Timestamp: {timestamp}\n"
        f"Nonce: {nonce}"
    )


async def build_authorization(signer: Signer, data: bytes, app_id: str) -> AuthorizationEnvelope:
    """
    Sign a storage authorization for ``data``.

    Args:
        signer: Signer holding the sender identity
        data: Payload that will be stored
        app_id: Application id bound into the signed message

    Returns:
        Envelope ready to attach to a store request
    """
    sender = await signer.get_address()
    digest = content_hash(data)
    timestamp = int(time.time() * 1000)
    nonce = secrets.token_hex(13)

    message = canonical_storage_message(digest, app_id, timestamp, nonce)
    signature = await signer.sign_message(message)

    return AuthorizationEnvelope(
        sender=sender,
        signature=signature,
        timestamp=timestamp,
        nonce=nonce,
        app_id=app_id,
        content_hash=digest,
    )


class Ed25519Signer:
    """Ed25519 signer; the address is the SHA-256 of the raw public key."""

    def __init__(self, private_key: ed25519.Ed25519PrivateKey):
        self.private_key = private_key
        self.public_key = private_key.public_key()

    @classmethod
    def generate(cls) -> "Ed25519Signer":
        return cls(ed25519.Ed25519PrivateKey.generate())

    @classmethod
    def load_or_generate(cls, key_path: Path) -> "Ed25519Signer":
        """Load a PEM key from ``key_path``, creating one if it does not exist."""
        key_path = Path(key_path)

        if key_path.exists():
            with open(key_path, "rb") as f:
                private_key = serialization.load_pem_private_key(f.read(), password=None)
            if not isinstance(private_key, ed25519.Ed25519PrivateKey):
                raise ValueError(f"{key_path} does not hold an Ed25519 key")
            logger.info("Loaded existing signing identity")
            return cls(private_key)

        os.makedirs(key_path.parent, exist_ok=True)
        private_key = ed25519.Ed25519PrivateKey.generate()
        pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption()
        )
        with open(key_path, "wb") as f:
            f.write(pem)

        logger.info("Generated new signing identity")
        return cls(private_key)

    def public_key_bytes(self) -> bytes:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw
        )

    async def get_address(self) -> str:
        return hashlib.sha256(self.public_key_bytes()).hexdigest()

    async def sign_message(self, message: str) -> str:
        return self.private_key.sign(message.encode("utf-8")).hex()

    @staticmethod
    def verify(public_key: bytes, message: str, signature: str) -> bool:
        """Verify a hex signature produced by :meth:`sign_message`."""
        try:
            key = ed25519.Ed25519PublicKey.from_public_bytes(public_key)
            key.verify(bytes.fromhex(signature), message.encode("utf-8"))
            return True
        except Exception:
            return False


def signer_from_env(default_path: Optional[str] = None) -> Optional[Ed25519Signer]:
    """Signer from BYTECAVE_KEY_PATH, or None when no key path is configured."""
    key_path = os.getenv("BYTECAVE_KEY_PATH", default_path or "")
    if not key_path:
        return None
    return Ed25519Signer.load_or_generate(Path(key_path))
