"""Helpers for working with mesh node identifiers."""

from __future__ import annotations

from typing import Iterable, Optional, Union

from core.models import BROADCAST_NODE

NODE_PREFIX = "!"


def node_id_to_hex(node_id: Union[int, str]) -> str:
    """Return the 8-digit lowercase hex form used as the directory key."""

    if isinstance(node_id, int):
        return f"{node_id & 0xFFFFFFFF:08x}"
    return node_id.lstrip(NODE_PREFIX).lower()


def hex_to_node_id(node_hex: str) -> int:
    """Parse ``abcd1234`` or ``!abcd1234`` back into the numeric id."""

    return int(node_hex.lstrip(NODE_PREFIX), 16)


def format_user_id(node_id: Union[int, str]) -> str:
    """Return the ``!hex`` notation shown by mesh clients."""

    return f"{NODE_PREFIX}{node_id_to_hex(node_id)}"


def is_broadcast(node_id: int) -> bool:
    return node_id == BROADCAST_NODE


def normalize_node_hex(raw: Union[int, str]) -> Optional[str]:
    """Normalize a configured node id (int, ``!hex`` or bare hex string) to hex.

    Returns ``None`` for values that are not valid 32-bit node ids.
    """

    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        if 0 <= raw <= 0xFFFFFFFF:
            return node_id_to_hex(raw)
        return None

    text = raw.strip()
    if not text:
        return None
    try:
        value = hex_to_node_id(text)
    except ValueError:
        return None
    if not 0 <= value <= 0xFFFFFFFF:
        return None
    return node_id_to_hex(value)


def normalize_node_set(raw_ids: Iterable[Union[int, str]]) -> frozenset[str]:
    """Normalize a list of configured node ids, dropping invalid entries."""

    normalized = (normalize_node_hex(raw) for raw in raw_ids)
    return frozenset(node_hex for node_hex in normalized if node_hex)
