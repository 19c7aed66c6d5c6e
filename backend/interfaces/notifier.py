"""Resolution notification sink contract."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from models.signals import SignalResolvedEvent


@runtime_checkable
class ResolutionNotifier(Protocol):
    async def notify_resolution(self, event: SignalResolvedEvent) -> None:
        """Deliver one committed resolution. Best-effort; may raise."""
