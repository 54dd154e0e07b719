"""Transport codec (core domain).

Decodes MQTT ServiceEnvelope bytes into core models, decrypting channel
traffic with AES-CTR. The codec holds no mutable state, so one instance can be
shared by every worker that handles inbound messages.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from google.protobuf.message import DecodeError as ProtobufDecodeError
from meshtastic.protobuf import mesh_pb2, mqtt_pb2, portnums_pb2

from core.errors import DecodeError, UndecryptableError
from core.models import DecodedData, Envelope, Packet

KNOWN_PORTNUMS = frozenset(portnums_pb2.PortNum.values()) - {portnums_pb2.PortNum.UNKNOWN_APP}


def build_nonce(packet_id: int, from_node: int) -> bytes:
    """Return the 16-byte CTR nonce: packet id then sender, both 64-bit LE."""

    return packet_id.to_bytes(8, "little") + from_node.to_bytes(8, "little")


def apply_keystream(key: bytes, nonce: bytes, data: bytes) -> bytes:
    """XOR ``data`` with the AES-CTR keystream (encrypts and decrypts)."""

    decryptor = Cipher(algorithms.AES(key), modes.CTR(nonce)).decryptor()
    return decryptor.update(data) + decryptor.finalize()


def parse_data(raw: bytes) -> Optional[DecodedData]:
    """Parse an inner Data message, returning ``None`` if it is not plausible.

    Wrong-key plaintext is random bytes, which protobuf will sometimes accept
    as a message made of unknown fields. Requiring a known, non-zero port
    number rejects those.
    """

    data = mesh_pb2.Data()
    try:
        data.ParseFromString(raw)
    except ProtobufDecodeError:
        return None
    if data.portnum not in KNOWN_PORTNUMS:
        return None
    return DecodedData(portnum=data.portnum, payload=bytes(data.payload))


def decrypt_payload(
    packet_id: int,
    from_node: int,
    ciphertext: bytes,
    keyring: Sequence[bytes],
) -> Optional[Tuple[DecodedData, int]]:
    """Try each key in order; return the first decode and the key's index."""

    nonce = build_nonce(packet_id, from_node)
    for index, key in enumerate(keyring):
        decoded = parse_data(apply_keystream(key, nonce, ciphertext))
        if decoded is not None:
            return decoded, index
    return None


def _packet_from_proto(
    mesh_packet: mesh_pb2.MeshPacket,
    decoded: Optional[DecodedData],
) -> Packet:
    return Packet(
        id=mesh_packet.id,
        from_node=getattr(mesh_packet, "from"),
        to_node=mesh_packet.to,
        channel=mesh_packet.channel,
        hop_start=mesh_packet.hop_start,
        hop_limit=mesh_packet.hop_limit,
        rx_time=mesh_packet.rx_time,
        rx_snr=mesh_packet.rx_snr,
        rx_rssi=mesh_packet.rx_rssi,
        decoded=decoded,
        encrypted=bytes(mesh_packet.encrypted),
    )


class TransportCodec:
    """Decode ServiceEnvelopes with an ordered keyring."""

    def __init__(self, keyring: Sequence[bytes]) -> None:
        self._keyring = tuple(keyring)

    @property
    def key_count(self) -> int:
        return len(self._keyring)

    def decode(self, payload: bytes) -> Envelope:
        """Decode one transport message.

        Raises ``DecodeError`` for malformed bytes and ``UndecryptableError``
        when the packet is encrypted and no configured key fits.
        """

        service_envelope = mqtt_pb2.ServiceEnvelope()
        try:
            service_envelope.ParseFromString(payload)
        except ProtobufDecodeError as exc:
            raise DecodeError(f"Malformed service envelope: {exc}") from exc
        if not service_envelope.HasField("packet"):
            raise DecodeError("Service envelope carries no packet")

        mesh_packet = service_envelope.packet
        variant = mesh_packet.WhichOneof("payload_variant")
        key_index: Optional[int] = None
        if variant == "decoded":
            decoded = DecodedData(
                portnum=mesh_packet.decoded.portnum,
                payload=bytes(mesh_packet.decoded.payload),
            )
        elif variant == "encrypted":
            sender = getattr(mesh_packet, "from")
            result = decrypt_payload(mesh_packet.id, sender, mesh_packet.encrypted, self._keyring)
            if result is None:
                raise UndecryptableError(mesh_packet.id, sender, len(self._keyring))
            decoded, key_index = result
        else:
            raise DecodeError(f"Packet {mesh_packet.id} carries no payload")

        return Envelope(
            channel_id=service_envelope.channel_id,
            gateway_id=service_envelope.gateway_id,
            packet=_packet_from_proto(mesh_packet, decoded),
            key_index=key_index,
        )


def encode_envelope(envelope: Envelope, key: Optional[bytes] = None) -> bytes:
    """Serialize an envelope back to wire bytes.

    With ``key`` the decoded payload is encrypted under it; without a key a
    decoded payload is sent in the clear and an undecoded one keeps its
    original ciphertext.
    """

    packet = envelope.packet
    mesh_packet = mesh_pb2.MeshPacket(
        to=packet.to_node,
        id=packet.id,
        channel=packet.channel,
        hop_start=packet.hop_start,
        hop_limit=packet.hop_limit,
        rx_time=packet.rx_time,
        rx_snr=packet.rx_snr,
        rx_rssi=packet.rx_rssi,
    )
    setattr(mesh_packet, "from", packet.from_node)

    if packet.decoded is not None:
        data = mesh_pb2.Data(portnum=packet.decoded.portnum, payload=packet.decoded.payload)
        if key is not None:
            nonce = build_nonce(packet.id, packet.from_node)
            mesh_packet.encrypted = apply_keystream(key, nonce, data.SerializeToString())
        else:
            mesh_packet.decoded.CopyFrom(data)
    else:
        mesh_packet.encrypted = packet.encrypted

    service_envelope = mqtt_pb2.ServiceEnvelope(
        channel_id=envelope.channel_id,
        gateway_id=envelope.gateway_id,
    )
    service_envelope.packet.CopyFrom(mesh_packet)
    return service_envelope.SerializeToString()
