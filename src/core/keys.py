"""Channel key parsing.

Channel keys are shared as base64 strings. A single-byte key is shorthand for
the well-known default key (or one of its numbered variants), and ``AA==``
means the channel is unencrypted.
"""

from __future__ import annotations

import base64
import binascii
from typing import Iterable, List, Optional

DEFAULT_CHANNEL_KEY = bytes(
    [
        0xD4, 0xF1, 0xBB, 0x3A, 0x20, 0x29, 0x07, 0x59,
        0xF0, 0xBC, 0xFF, 0xAB, 0xCF, 0x4E, 0x69, 0x01,
    ]
)

VALID_KEY_LENGTHS = (16, 32)


def expand_shorthand(index: int) -> Optional[bytes]:
    """Expand a single-byte key index into a full default-family key."""

    if index == 0:
        return None
    if not 1 <= index <= 10:
        raise ValueError(f"Invalid shorthand key index: {index}")
    key = bytearray(DEFAULT_CHANNEL_KEY)
    key[-1] = (key[-1] + index - 1) & 0xFF
    return bytes(key)


def parse_channel_key(text: str) -> Optional[bytes]:
    """Decode one base64 channel key.

    Returns ``None`` for the "no encryption" key. Raises ``ValueError`` for
    malformed values so bad configuration fails at startup.
    """

    try:
        raw = base64.b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Channel key is not valid base64: {text!r}") from exc

    if len(raw) == 1:
        return expand_shorthand(raw[0])
    if len(raw) not in VALID_KEY_LENGTHS:
        raise ValueError(f"Channel key must be 16 or 32 bytes, got {len(raw)}")
    return raw


def build_keyring(values: Iterable[str]) -> List[bytes]:
    """Parse configured keys in order, skipping "no encryption" and repeats."""

    keyring: List[bytes] = []
    for value in values:
        key = parse_channel_key(value)
        if key is None or key in keyring:
            continue
        keyring.append(key)
    return keyring
