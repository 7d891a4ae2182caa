# Copyright (c) Syntropy Systems
"""Exception types raised by renderbench."""
from __future__ import annotations


class BenchError(Exception):
    """Base class for renderbench errors."""


class InvalidConfiguration(BenchError, ValueError):
    """Suite configuration or plan inputs are unusable."""


class ProtocolViolation(BenchError):
    """A pre-registered experimental protocol constraint was violated."""


class OrderViolation(ProtocolViolation):
    """The running backend does not match the registered execution order."""


class IdentityMismatch(ProtocolViolation):
    """The reporting device differs from the identity pinned for the group."""

    def __init__(self, group: str, expected: str, actual: str) -> None:
        self.group = group
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Pinned device mismatch for session group {group!r}: "
            f"expected {expected!r}, got {actual!r}"
        )


class SessionAcquisitionFailure(BenchError):
    """The environment refused or failed to start an immersive session."""
