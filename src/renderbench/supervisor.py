# Copyright (c) Syntropy Systems
"""Entry-timeout supervisor for the immersive phase of combined runs."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from renderbench.clock import Clock, TimerHandle

logger = logging.getLogger(__name__)


class EntryTimeoutSupervisor:
    """Fires once if no immersive session starts within ``timeout_ms`` of suite time.

    Re-arming cancels the pending timer first, so there is never more than one.
    If a session request is in flight when the timer expires, the deadline is
    extended once by ``grace_ms`` instead of firing.
    """

    clock: Clock
    timeout_ms: float
    grace_ms: float
    fired: bool
    request_in_flight: bool

    def __init__(
        self,
        clock: Clock,
        timeout_ms: float,
        grace_ms: float,
        on_timeout: Callable[[], None],
    ) -> None:
        self.clock = clock
        self.timeout_ms = timeout_ms
        self.grace_ms = grace_ms
        self.fired = False
        self.request_in_flight = False
        self.extended = False
        self._on_timeout = on_timeout
        self._handle: TimerHandle | None = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self) -> None:
        """(Re)start the countdown on the suite clock."""
        self.cancel()
        self.extended = False
        self._schedule(self.timeout_ms)
        logger.debug("Entry timeout armed (%sms)", self.timeout_ms)

    def cancel(self) -> None:
        """Stop the countdown, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def begin_request(self) -> None:
        self.request_in_flight = True

    def end_request(self) -> None:
        self.request_in_flight = False

    def _schedule(self, delay_ms: float) -> None:
        self._handle = self.clock.call_later(max(0.0, delay_ms), self._expire)

    def _expire(self) -> None:
        self._handle = None
        if self.request_in_flight and not self.extended:
            self.extended = True
            logger.info("Session request in flight; extending entry timeout by %sms", self.grace_ms)
            self._schedule(self.grace_ms)
            return
        self.fired = True
        logger.warning("Immersive phase not entered within %sms", self.timeout_ms)
        self._on_timeout()
