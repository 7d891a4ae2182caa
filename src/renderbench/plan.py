# Copyright (c) Syntropy Systems
"""Condition planning: instance-count x trial cross product and seeded shuffle."""
from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import TYPE_CHECKING

from renderbench.errors import InvalidConfiguration

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

_UINT32 = 0xFFFFFFFF


@dataclass(frozen=True)
class Condition:
    """One (instance-count, trial-index) pair to be measured."""

    instances: int
    trial: int


def mulberry32(seed: int) -> Callable[[], float]:
    """Return a seeded generator of floats in [0, 1).

    32-bit xorshift-multiply mix; the same seed always yields the same stream.
    """
    state = seed & _UINT32

    def next_float() -> float:
        nonlocal state
        state = (state + 0x6D2B79F5) & _UINT32
        t = ((state ^ (state >> 15)) * (1 | state)) & _UINT32
        t = ((t + (((t ^ (t >> 7)) * (61 | t)) & _UINT32)) & _UINT32) ^ t
        return ((t ^ (t >> 14)) & _UINT32) / 4294967296

    return next_float


def shuffle_in_place(items: list[Condition], seed: int) -> None:
    """Fisher-Yates shuffle driven by mulberry32(seed)."""
    rng = mulberry32(seed)
    for i in range(len(items) - 1, 0, -1):
        j = int(rng() * (i + 1))
        items[i], items[j] = items[j], items[i]


def build_plan(
    instance_counts: Sequence[int],
    repeats: int,
    shuffle: bool = False,  # noqa: FBT001, FBT002
    seed: int = 0,
) -> list[Condition]:
    """Expand instance counts x repeats into an ordered condition list.

    Unshuffled order is instance-count-major, trial-minor, in the given list
    order.
    """
    if not instance_counts:
        msg = "At least one instance count is required"
        raise InvalidConfiguration(msg)
    for count in instance_counts:
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            msg = f"Instance counts must be positive integers, got {count!r}"
            raise InvalidConfiguration(msg)
    if repeats < 1:
        msg = f"Trial repeat count must be >= 1, got {repeats}"
        raise InvalidConfiguration(msg)

    plan = [
        Condition(instances=count, trial=trial)
        for count, trial in itertools.product(instance_counts, range(1, repeats + 1))
    ]
    if shuffle:
        shuffle_in_place(plan, seed)
    return plan


class PlanCursor:
    """Forward-only position in a plan, owned by the active surface driver."""

    plan: list[Condition]
    index: int

    def __init__(self, plan: list[Condition]) -> None:
        self.plan = plan
        self.index = 0

    def __len__(self) -> int:
        return len(self.plan)

    @property
    def exhausted(self) -> bool:
        """Return whether every condition has been consumed."""
        return self.index >= len(self.plan)

    @property
    def current(self) -> Condition | None:
        """Return the condition at the cursor, if any."""
        if self.exhausted:
            return None
        return self.plan[self.index]

    @property
    def previous(self) -> Condition | None:
        """Return the condition just before the cursor, if any."""
        if self.index == 0 or self.index > len(self.plan):
            return None
        return self.plan[self.index - 1]

    @property
    def position(self) -> int | None:
        """Return the 1-based index of the current condition."""
        if self.exhausted:
            return None
        return self.index + 1

    def advance(self) -> None:
        """Move to the next condition. Never rewinds."""
        if not self.exhausted:
            self.index += 1

    def changes_block(self) -> bool:
        """Return whether the current condition starts a new instance-count block."""
        current = self.current
        previous = self.previous
        return (
            current is not None
            and previous is not None
            and current.instances != previous.instances
        )
