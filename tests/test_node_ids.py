from __future__ import annotations

from core.node_ids import (
    format_user_id,
    hex_to_node_id,
    is_broadcast,
    node_id_to_hex,
    normalize_node_hex,
    normalize_node_set,
)


def test_hex_roundtrip() -> None:
    assert node_id_to_hex(0xABCD) == "0000abcd"
    assert hex_to_node_id("0000abcd") == 0xABCD
    assert hex_to_node_id("!0000abcd") == 0xABCD
    assert format_user_id(0xABCD) == "!0000abcd"
    assert node_id_to_hex("!DEADBEEF") == "deadbeef"


def test_broadcast_address() -> None:
    assert is_broadcast(0xFFFFFFFF)
    assert not is_broadcast(0x1234)


def test_normalize_accepts_every_notation() -> None:
    assert normalize_node_hex("!ABCD1234") == "abcd1234"
    assert normalize_node_hex("abcd1234") == "abcd1234"
    assert normalize_node_hex(" 1234 ") == "00001234"
    assert normalize_node_hex(0xABCD1234) == "abcd1234"


def test_normalize_rejects_invalid_ids() -> None:
    assert normalize_node_hex("zz") is None
    assert normalize_node_hex("") is None
    assert normalize_node_hex("1ffffffff") is None
    assert normalize_node_hex(-1) is None
    assert normalize_node_hex(True) is None


def test_normalize_node_set_drops_invalid_entries() -> None:
    assert normalize_node_set(["!0000abcd", 0xABCD, "nope"]) == frozenset({"0000abcd"})
