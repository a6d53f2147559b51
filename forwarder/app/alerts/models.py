"""
models.py — Shared data structures for the alert relay.

Defines:
    • Alert          — immutable message handed from ingress to the worker
    • AlertRecipient — one configured (id, public key) pair
    • RecipientSet   — the ordered, read-only recipient list
    • WorkerState    — delivery worker state machine
    • WorkerStats    — delivery counters surfaced through /health

═══════════════════════════════════════════════════════════════════════════
OWNERSHIP
═══════════════════════════════════════════════════════════════════════════

    Ingress handler ──builds──▶ Alert ──put──▶ DeliveryChannel
                                                   │
                                                  get
                                                   ▼
                                            DeliveryWorker  (sole owner
                                                             for one attempt)

An Alert is never mutated after construction and never shared between
two delivery attempts; nothing is persisted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple

from forwarder.app.core.errors import ConfigurationError

# 32-byte Curve25519 public key, hex encoded
_PUBLIC_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


# ═══════════════════════════════════════════════════════════════════════════
# Alert Value
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Alert:
    """
    A fully formatted alert, ready for delivery.

    Attributes
    ----------
    message : str
        Pre-rendered message text (also used as the image caption).
    image : bytes | None
        Attachment bytes; present only if the image was fetched and
        non-empty.
    """
    message: str
    image: Optional[bytes] = None

    @property
    def has_image(self) -> bool:
        return bool(self.image)


# ═══════════════════════════════════════════════════════════════════════════
# Recipients
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AlertRecipient:
    """A messaging identity that receives every alert."""
    recipient_id: str
    public_key: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient_id": self.recipient_id,
            "public_key": self.public_key[:8] + "...",
        }


@dataclass(frozen=True)
class RecipientSet:
    """Ordered recipient list; delivery follows this order for every alert."""
    recipients: Tuple[AlertRecipient, ...] = ()

    def __iter__(self) -> Iterator[AlertRecipient]:
        return iter(self.recipients)

    def __len__(self) -> int:
        return len(self.recipients)

    @property
    def ids(self) -> Tuple[str, ...]:
        return tuple(r.recipient_id for r in self.recipients)


def _split_csv(value: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def build_recipient_set(ids: str, public_keys: str) -> RecipientSet:
    """
    Pair up the comma-separated recipient ids and public keys.

    Parameters
    ----------
    ids : str
        Comma-separated recipient ids, e.g. ``"ECHOECHO,ABCD1234"``.
    public_keys : str
        Comma-separated hex public keys, in the same order.

    Returns
    -------
    RecipientSet

    Raises
    ------
    ConfigurationError
        If no recipients are given, the two lists differ in length, or a
        key is not a 32-byte hex string.
    """
    id_list = _split_csv(ids)
    key_list = _split_csv(public_keys)

    if not id_list:
        raise ConfigurationError("No recipient IDs provided", setting="G2T_RCPT_ID")
    if len(id_list) != len(key_list):
        raise ConfigurationError(
            f"Mismatching recipient IDs and pubkeys: "
            f"{len(id_list)} ids, {len(key_list)} pubkeys",
            setting="G2T_RCPT_PUBKEY",
        )

    recipients = []
    for index, (recipient_id, key) in enumerate(zip(id_list, key_list)):
        if not _PUBLIC_KEY_RE.match(key):
            raise ConfigurationError(
                f"Failed to add recipient {index} ({recipient_id}) as contact: "
                f"public key must be 64 hex characters",
                setting="G2T_RCPT_PUBKEY",
                index=index,
            )
        recipients.append(AlertRecipient(recipient_id=recipient_id, public_key=key.lower()))

    return RecipientSet(recipients=tuple(recipients))


# ═══════════════════════════════════════════════════════════════════════════
# Worker State
# ═══════════════════════════════════════════════════════════════════════════

class WorkerState(str, Enum):
    """Delivery worker state machine."""
    STOPPED  = "stopped"    # task not running
    IDLE     = "idle"       # waiting for the channel to yield an alert
    DRAINING = "draining"   # holding an open session, sending queued alerts


@dataclass
class WorkerStats:
    """Running delivery counters (process lifetime, not persisted)."""
    sessions_opened: int = 0
    session_failures: int = 0
    alerts_delivered: int = 0
    alerts_dropped: int = 0
    sends_ok: int = 0
    sends_failed: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "sessions_opened": self.sessions_opened,
            "session_failures": self.session_failures,
            "alerts_delivered": self.alerts_delivered,
            "alerts_dropped": self.alerts_dropped,
            "sends_ok": self.sends_ok,
            "sends_failed": self.sends_failed,
        }
        if self.last_error:
            d["last_error"] = self.last_error
        return d
