"""
threema_e2e.py — End-to-end encryption of Threema messages.

Every message is a NaCl box (Curve25519 + XSalsa20-Poly1305) from the
gateway's private key to the recipient's configured public key:

    plaintext = type byte ‖ body ‖ padding

    Type   Body
    ────   ──────────────────────────────────────────────────────────
    0x01   UTF-8 text
    0x02   blob id (16) ‖ encrypted blob size (uint32 LE) ‖ blob nonce (24)

Padding is PKCS#7 style: 1–255 bytes, each holding the padding length,
with the padded message never shorter than 32 bytes.

Image bytes are boxed with the same key pair under their own nonce and
uploaded as a blob before the image message that references them.
"""

from __future__ import annotations

import secrets
import struct
from typing import Dict, Mapping, Tuple

from nacl.public import Box, PrivateKey, PublicKey
from nacl.utils import random as random_bytes

from forwarder.app.core.errors import SendError

TEXT_MESSAGE = 0x01
IMAGE_MESSAGE = 0x02

NONCE_SIZE = Box.NONCE_SIZE
BLOB_ID_SIZE = 16
MIN_PADDED_SIZE = 32


def pad(data: bytes) -> bytes:
    padding = secrets.randbelow(255) + 1
    if len(data) + padding < MIN_PADDED_SIZE:
        padding = MIN_PADDED_SIZE - len(data)
    return data + bytes([padding]) * padding


def unpad(data: bytes) -> bytes:
    return data[:-data[-1]]


class E2EEncryptor:
    """
    Boxes messages for the configured recipients.

    Parameters
    ----------
    private_key : str
        Gateway private key, 64 hex characters.
    public_keys : Mapping[str, str]
        Recipient id → hex public key.
    """

    def __init__(self, private_key: str, public_keys: Mapping[str, str]) -> None:
        self._private_key = PrivateKey(bytes.fromhex(private_key))
        self._boxes: Dict[str, Box] = {
            rid: Box(self._private_key, PublicKey(bytes.fromhex(key)))
            for rid, key in public_keys.items()
        }

    @property
    def public_key(self) -> bytes:
        return bytes(self._private_key.public_key)

    def _box(self, recipient_id: str) -> Box:
        try:
            return self._boxes[recipient_id]
        except KeyError:
            raise SendError(recipient_id, "no public key configured") from None

    def encrypt(self, recipient_id: str, data: bytes) -> Tuple[bytes, bytes]:
        """Box raw bytes; returns ``(nonce, ciphertext)``."""
        nonce = random_bytes(NONCE_SIZE)
        return nonce, self._box(recipient_id).encrypt(data, nonce).ciphertext

    def text_message(self, recipient_id: str, text: str) -> Tuple[bytes, bytes]:
        payload = bytes([TEXT_MESSAGE]) + text.encode("utf-8")
        return self.encrypt(recipient_id, pad(payload))

    def image_message(
        self, recipient_id: str, blob_id: bytes, blob_size: int, blob_nonce: bytes,
    ) -> Tuple[bytes, bytes]:
        payload = bytes([IMAGE_MESSAGE]) + struct.pack(
            "<16sI24s", blob_id, blob_size, blob_nonce,
        )
        return self.encrypt(recipient_id, pad(payload))
