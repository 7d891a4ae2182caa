# Copyright (c) Syntropy Systems
"""Pre-registered protocol checks: execution order and device identity pinning.

Both checks run once before any measurement and are fatal on failure.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from renderbench.config import (
    ORDER_EXTERNAL,
    ORDER_FIXED_ABBA,
    ORDER_FIXED_BAAB,
    ORDER_UNCONSTRAINED,
    normalize_order_mode,
)
from renderbench.errors import IdentityMismatch, OrderViolation

if TYPE_CHECKING:
    from collections.abc import Mapping

    from renderbench.store import KeyValueStore

logger = logging.getLogger(__name__)

ORDER_TABLES: dict[str, tuple[str, ...]] = {
    ORDER_FIXED_ABBA: ("A", "B", "B", "A"),
    ORDER_FIXED_BAAB: ("B", "A", "A", "B"),
}

IDENTITY_KEY_PREFIX = "renderbench_gpu_pin_"


def identity_key(session_group: str) -> str:
    """Store key holding the pinned identity for a session group."""
    return f"{IDENTITY_KEY_PREFIX}{session_group}"


class ProtocolGuard:
    """Validates execution order and device identity before a suite starts.

    ``slots`` maps the letters of the fixed order tables to backend names;
    without it the letters are the backend names.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        slots: Mapping[str, str] | None = None,
    ) -> None:
        self.store = store
        self.slots = dict(slots) if slots else {}

    def expected_backend(self, order_mode: str, order_index: int) -> str | None:
        """Return the backend a fixed order table expects at a 1-based index."""
        table = ORDER_TABLES.get(normalize_order_mode(order_mode))
        if table is None or order_index < 1 or order_index > len(table):
            return None
        letter = table[order_index - 1]
        return self.slots.get(letter, letter)

    def validate_order(
        self,
        backend_name: str,
        order_mode: str,
        order_index: int = 0,
        assigned_backend: str | None = None,
    ) -> None:
        """Raise OrderViolation unless backend_name is allowed at this point."""
        mode = normalize_order_mode(order_mode)
        if mode == ORDER_UNCONSTRAINED:
            return

        if mode in ORDER_TABLES:
            expected = self.expected_backend(mode, order_index)
            if expected is None:
                msg = (
                    f"Invalid order controls: order_mode={mode}, "
                    f"order_index={order_index} (expected 1-{len(ORDER_TABLES[mode])})"
                )
                raise OrderViolation(msg)
            if expected != backend_name:
                msg = (
                    f"Order control violation: expected {expected} at index "
                    f"{order_index}, got {backend_name}"
                )
                raise OrderViolation(msg)
            logger.info("Order check passed: %s at %s #%d", backend_name, mode, order_index)
            return

        if mode == ORDER_EXTERNAL:
            if not assigned_backend:
                msg = f"Order control violation: {ORDER_EXTERNAL} mode requires an assigned backend"
                raise OrderViolation(msg)
            if assigned_backend != backend_name:
                msg = (
                    f"Order control violation: assigned backend is "
                    f"{assigned_backend}, got {backend_name}"
                )
                raise OrderViolation(msg)
            return

        msg = f"Order control violation: unsupported order mode {mode}"
        raise OrderViolation(msg)

    def validate_identity(self, session_group: str, identity: str) -> None:
        """Pin identity on first use for a group; raise IdentityMismatch afterwards."""
        if self.store is None:
            msg = "Identity pinning requires a key-value store"
            raise RuntimeError(msg)
        key = identity_key(session_group)
        previous = self.store.get(key)
        if previous is None:
            self.store.set(key, identity)
            logger.info("Pinned device identity for %s: %s", session_group, identity)
            return
        if previous != identity:
            raise IdentityMismatch(session_group, previous, identity)
