"""Provider status vocabularies and the monotonic merge rule.

Every provider reports progress with its own strings. Each vocabulary maps a
canonical raw status to the normalized dashboard status, a rank on the path
toward settlement, and whether no further transitions may follow.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

NORMALIZED_STATUSES = (PENDING, PROCESSING, COMPLETED, FAILED)
DEFAULT_STATUS = PENDING

PAYCREST = "paycrest"
PRETIUM = "pretium"
TRANSAK = "transak"
MPESA = "mpesa"

PROVIDERS = (PAYCREST, PRETIUM, TRANSAK, MPESA)


@dataclass(frozen=True)
class StatusInfo:
    normalized: str
    rank: int
    terminal: bool = False


@dataclass(frozen=True)
class StatusTransition:
    """Outcome of merging an incoming provider status into an order."""

    accepted: bool
    previous: Optional[str]
    status: Optional[str]
    normalized: str
    reason: str


_TERMINAL_FAILURE = StatusInfo(FAILED, 3, True)

VOCABULARIES: Dict[str, Dict[str, StatusInfo]] = {
    PAYCREST: {
        "initiated": StatusInfo(PENDING, 0),
        "pending": StatusInfo(PROCESSING, 1),
        "processing": StatusInfo(PROCESSING, 1),
        "validated": StatusInfo(COMPLETED, 2),
        "settled": StatusInfo(COMPLETED, 3, True),
        "refunded": _TERMINAL_FAILURE,
        "expired": _TERMINAL_FAILURE,
        "failed": _TERMINAL_FAILURE,
        "cancelled": _TERMINAL_FAILURE,
    },
    PRETIUM: {
        "PENDING": StatusInfo(PROCESSING, 1),
        "COMPLETE": StatusInfo(COMPLETED, 3, True),
        "COMPLETED": StatusInfo(COMPLETED, 3, True),
        "FAILED": _TERMINAL_FAILURE,
        "CANCELLED": _TERMINAL_FAILURE,
        "REVERSED": _TERMINAL_FAILURE,
    },
    TRANSAK: {
        "AWAITING_PAYMENT_FROM_USER": StatusInfo(PENDING, 0),
        "PAYMENT_DONE_MARKED_BY_USER": StatusInfo(PROCESSING, 1),
        "PROCESSING": StatusInfo(PROCESSING, 1),
        "PENDING_DELIVERY_FROM_TRANSAK": StatusInfo(PROCESSING, 2),
        "COMPLETED": StatusInfo(COMPLETED, 3, True),
        "FAILED": _TERMINAL_FAILURE,
        "CANCELLED": _TERMINAL_FAILURE,
        "EXPIRED": _TERMINAL_FAILURE,
        "REFUNDED": _TERMINAL_FAILURE,
    },
    MPESA: {
        "PENDING": StatusInfo(PENDING, 0),
        "COMPLETED": StatusInfo(COMPLETED, 3, True),
        "FAILED": _TERMINAL_FAILURE,
        "TIMEOUT": _TERMINAL_FAILURE,
    },
}

# Free-text fallback for statuses no vocabulary knows about.
_GENERIC: Dict[str, str] = {
    "completed": COMPLETED,
    "complete": COMPLETED,
    "fulfilled": COMPLETED,
    "settled": COMPLETED,
    "success": COMPLETED,
    "successful": COMPLETED,
    "validated": PROCESSING,
    "processing": PROCESSING,
    "pending": PENDING,
    "initiated": PENDING,
    "failed": FAILED,
    "cancelled": FAILED,
    "canceled": FAILED,
    "expired": FAILED,
    "refunded": FAILED,
    "reversed": FAILED,
}


def canonical_status(provider: str, raw: Optional[str]) -> Optional[str]:
    """Strip provider prefixes and fix the case the vocabulary expects."""

    if raw is None:
        return None
    value = str(raw).strip()
    if not value:
        return None
    if provider == PAYCREST:
        value = value.lower()
        for prefix in ("payment_order.", "order."):
            if value.startswith(prefix):
                value = value[len(prefix):]
        return value
    value = value.upper()
    if provider == TRANSAK and value.startswith("ORDER_"):
        value = value[len("ORDER_"):]
    return value


def status_info(provider: str, raw: Optional[str]) -> Optional[StatusInfo]:
    vocabulary = VOCABULARIES.get(provider)
    if vocabulary is None:
        return None
    return vocabulary.get(canonical_status(provider, raw) or "")


def normalize_status(provider: str, raw: Optional[str]) -> str:
    """Map any provider status onto the closed dashboard set. Never raises."""

    info = status_info(provider, raw)
    if info is not None:
        return info.normalized
    if raw is not None:
        generic = _GENERIC.get(str(raw).strip().lower())
        if generic:
            return generic
        if str(raw).strip().lower() in NORMALIZED_STATUSES:
            return str(raw).strip().lower()
    return DEFAULT_STATUS


def is_terminal(provider: str, raw: Optional[str]) -> bool:
    info = status_info(provider, raw)
    return bool(info and info.terminal)


def is_settled(provider: str, raw: Optional[str]) -> bool:
    info = status_info(provider, raw)
    return bool(info and info.normalized == COMPLETED)


def is_failed(provider: str, raw: Optional[str]) -> bool:
    info = status_info(provider, raw)
    return bool(info and info.normalized == FAILED)


def is_final(provider: str, raw: Optional[str]) -> bool:
    """True when a poller or client may stop watching the order."""

    return is_terminal(provider, raw) or is_settled(provider, raw)


def merge_status(provider: str, current: Optional[str], incoming: Optional[str]) -> StatusTransition:
    """Decide whether ``incoming`` may replace ``current``.

    Transitions only move forward: unknown, duplicate and lower-ranked
    statuses are rejected, and nothing replaces a terminal status.
    """

    current_key = canonical_status(provider, current)
    incoming_key = canonical_status(provider, incoming)
    incoming_info = status_info(provider, incoming_key)
    current_info = status_info(provider, current_key)

    def result(accepted: bool, status: Optional[str], reason: str) -> StatusTransition:
        return StatusTransition(
            accepted=accepted,
            previous=current_key,
            status=status,
            normalized=normalize_status(provider, status),
            reason=reason,
        )

    if incoming_info is None:
        logger.warning("Unknown %s status %r ignored", provider, incoming)
        return result(False, current_key, "unknown_status")
    if current_info is None:
        return result(True, incoming_key, "advanced")
    if current_info.terminal:
        return result(False, current_key, "terminal")
    if incoming_key == current_key:
        return result(False, current_key, "duplicate")
    if incoming_info.rank < current_info.rank:
        return result(False, current_key, "stale")
    if incoming_info.rank == current_info.rank and not incoming_info.terminal:
        return result(False, current_key, "duplicate")
    return result(True, incoming_key, "advanced")
