from __future__ import annotations

import pytest
from meshtastic.protobuf import mqtt_pb2, portnums_pb2

from core.codec import TransportCodec, build_nonce, decrypt_payload, encode_envelope
from core.errors import DecodeError, UndecryptableError
from core.keys import DEFAULT_CHANNEL_KEY
from core.models import DecodedData, Envelope, Packet

TEXT = portnums_pb2.PortNum.TEXT_MESSAGE_APP
PRIVATE_KEY = bytes.fromhex("00112233445566778899aabbccddeeff")


def _envelope(text: bytes = b"hello mesh") -> Envelope:
    return Envelope(
        channel_id="LongFast",
        gateway_id="!0badc0de",
        packet=Packet(
            id=0x1A2B3C4D,
            from_node=0xDEADBEEF,
            to_node=0xFFFFFFFF,
            channel=8,
            hop_start=3,
            hop_limit=1,
            rx_time=1700000000,
            rx_snr=6.5,
            rx_rssi=-90,
            decoded=DecodedData(portnum=TEXT, payload=text),
        ),
    )


def test_nonce_layout() -> None:
    nonce = build_nonce(0x01020304, 0xAABBCCDD)
    assert len(nonce) == 16
    assert nonce[:8] == bytes([4, 3, 2, 1, 0, 0, 0, 0])
    assert nonce[8:] == bytes([0xDD, 0xCC, 0xBB, 0xAA, 0, 0, 0, 0])


def test_unencrypted_envelope_roundtrips() -> None:
    envelope = _envelope()
    decoded = TransportCodec([]).decode(encode_envelope(envelope))

    assert decoded == envelope
    assert decoded.key_index is None
    assert not decoded.packet.is_encrypted
    assert decoded.packet.hops_away == 2


def test_encrypted_envelope_decodes_with_matching_key() -> None:
    envelope = _envelope()
    decoded = TransportCodec([DEFAULT_CHANNEL_KEY]).decode(encode_envelope(envelope, key=DEFAULT_CHANNEL_KEY))

    assert decoded.key_index == 0
    assert decoded.packet.decoded == envelope.packet.decoded
    assert decoded.packet.from_node == 0xDEADBEEF
    assert decoded.gateway_id == "!0badc0de"


def test_second_key_is_used_when_first_does_not_fit() -> None:
    wire = encode_envelope(_envelope(), key=PRIVATE_KEY)
    codec = TransportCodec([DEFAULT_CHANNEL_KEY, PRIVATE_KEY])
    decoded = codec.decode(wire)

    assert codec.key_count == 2
    assert decoded.key_index == 1
    assert decoded.packet.decoded.payload == b"hello mesh"


def test_key_order_does_not_matter_for_success() -> None:
    wire = encode_envelope(_envelope(), key=PRIVATE_KEY)
    decoded = TransportCodec([PRIVATE_KEY, DEFAULT_CHANNEL_KEY]).decode(wire)

    assert decoded.key_index == 0
    assert decoded.packet.decoded.payload == b"hello mesh"


def test_no_matching_key_raises_undecryptable() -> None:
    wire = encode_envelope(_envelope(), key=PRIVATE_KEY)

    with pytest.raises(UndecryptableError) as excinfo:
        TransportCodec([DEFAULT_CHANNEL_KEY]).decode(wire)
    assert excinfo.value.packet_id == 0x1A2B3C4D
    assert excinfo.value.keys_tried == 1

    with pytest.raises(UndecryptableError):
        TransportCodec([]).decode(wire)


def test_decrypt_payload_returns_none_without_keys() -> None:
    assert decrypt_payload(1, 2, b"\x01\x02\x03", []) is None


def test_malformed_bytes_raise_decode_error() -> None:
    codec = TransportCodec([DEFAULT_CHANNEL_KEY])
    with pytest.raises(DecodeError):
        codec.decode(b"\x0a\xff")
    with pytest.raises(DecodeError):
        codec.decode(b"")


def test_envelope_without_payload_raises_decode_error() -> None:
    service_envelope = mqtt_pb2.ServiceEnvelope(channel_id="LongFast", gateway_id="!0badc0de")
    service_envelope.packet.id = 5

    with pytest.raises(DecodeError):
        TransportCodec([]).decode(service_envelope.SerializeToString())
