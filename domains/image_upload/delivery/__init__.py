"""
Delivery transports.

A transport is synchronous: a normal return means the destination durably
accepted every file in the call, a DeliveryError means it did not.
"""

from typing import Dict, Protocol, Sequence


class Delivery(Protocol):
    def deliver_one(self, path: str) -> str:
        """Upload one file; returns a remote reference or ""."""
        ...

    def deliver_batch(self, paths: Sequence[str]) -> Dict[str, str]:
        """Upload files together; returns remote references keyed by path."""
        ...

    def test_connection(self) -> None:
        ...

    def close(self) -> None:
        ...


__all__ = ["Delivery"]
