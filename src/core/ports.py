"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for the node directory, notification and
dispatch adapters so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Optional, Protocol

from core.models import GroupNotification, PacketGroup


class NodeDirectoryPort(Protocol):
    """Node identity lookups and updates required by the core pipeline."""

    def get_node_name(self, node_hex: str) -> Optional[str]:
        ...

    def upsert_node(
        self,
        node_hex: str,
        long_name: str,
        short_name: str,
        hw_model: str,
        hop_start: int,
    ) -> None:
        ...


class NotifierPort(Protocol):
    """Notification operations required by the dispatcher."""

    async def send(self, notification: GroupNotification) -> None:
        ...


class DispatchPort(Protocol):
    """Receives each drained packet group exactly once."""

    async def dispatch(self, group: PacketGroup) -> bool:
        ...
