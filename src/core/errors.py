"""Error taxonomy for the ingestion pipeline."""

from __future__ import annotations


class MeshwatchError(Exception):
    """Base class for pipeline errors."""


class DecodeError(MeshwatchError):
    """Raised when the envelope or inner payload violates the wire schema."""


class UndecryptableError(MeshwatchError):
    """Raised when no configured key yields a structurally valid payload."""

    def __init__(self, packet_id: int, from_node: int, keys_tried: int) -> None:
        super().__init__(
            f"No key decrypts packet {packet_id} from {from_node:08x} ({keys_tried} keys tried)"
        )
        self.packet_id = packet_id
        self.from_node = from_node
        self.keys_tried = keys_tried


class DispatchError(MeshwatchError):
    """Raised by notifier adapters when delivery fails."""
