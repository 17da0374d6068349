"""MQTT 3.1.1 wire format: fixed headers, strings and client packets."""

from __future__ import annotations

from enum import IntEnum

PROTOCOL_NAME = "MQTT"
PROTOCOL_LEVEL = 4

DEFAULT_BUFFER_SIZE = 256
DEFAULT_KEEPALIVE = 15
DEFAULT_SOCKET_TIMEOUT = 15
MAX_HEADER_SIZE = 5

QOS0 = 0 << 1
QOS1 = 1 << 1
QOS2 = 2 << 1

MAX_REMAINING_LENGTH = 268_435_455
MAX_STRING_LENGTH = 0xFFFF

_CONNECT_WILL = 0x04
_CONNECT_CLEAN_SESSION = 0x02
_CONNECT_USER = 0x80
_CONNECT_PASSWORD = 0x40


class PacketType(IntEnum):
    """Control packet types, already shifted into the high nibble."""

    CONNECT = 1 << 4
    CONNACK = 2 << 4
    PUBLISH = 3 << 4
    PUBACK = 4 << 4
    PUBREC = 5 << 4
    PUBREL = 6 << 4
    PUBCOMP = 7 << 4
    SUBSCRIBE = 8 << 4
    SUBACK = 9 << 4
    UNSUBSCRIBE = 10 << 4
    UNSUBACK = 11 << 4
    PINGREQ = 12 << 4
    PINGRESP = 13 << 4
    DISCONNECT = 14 << 4
    RESERVED = 15 << 4


class ClientState(IntEnum):
    """Connection state of a client, including the broker's CONNACK refusals."""

    CONNECTION_TIMEOUT = -4
    CONNECTION_LOST = -3
    CONNECT_FAILED = -2
    DISCONNECTED = -1
    CONNECTED = 0
    CONNECT_BAD_PROTOCOL = 1
    CONNECT_BAD_CLIENT_ID = 2
    CONNECT_UNAVAILABLE = 3
    CONNECT_BAD_CREDENTIALS = 4
    CONNECT_UNAUTHORIZED = 5


def encode_remaining_length(length: int) -> bytes:
    """Encode the variable-length 'remaining length' field of a fixed header."""
    if not 0 <= length <= MAX_REMAINING_LENGTH:
        raise ValueError(f"remaining length out of range: {length}")
    out = bytearray()
    while True:
        digit = length & 0x7F
        length >>= 7
        if length:
            digit |= 0x80
        out.append(digit)
        if not length:
            return bytes(out)


def _to_bytes(data: str | bytes | bytearray | memoryview) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def encode_string(text: str | bytes) -> bytes:
    """Encode a length-prefixed string; the text ends at its first NUL character."""
    raw = _to_bytes(text).split(b"\0", 1)[0]
    if len(raw) > MAX_STRING_LENGTH:
        raise ValueError(f"string too long: {len(raw)} bytes")
    return len(raw).to_bytes(2, "big") + raw


def build_packet(header: int, body: bytes = b"") -> bytes:
    """Prefix ``body`` with the fixed header byte and its remaining length."""
    if not 0 <= int(header) <= 0xFF:
        raise ValueError(f"header byte out of range: {header}")
    return bytes([int(header)]) + encode_remaining_length(len(body)) + bytes(body)


def _check_msg_id(msg_id: int) -> bytes:
    if not 0 <= msg_id <= 0xFFFF:
        raise ValueError(f"message id out of range: {msg_id}")
    return msg_id.to_bytes(2, "big")


def build_connect(
    client_id: str,
    keep_alive: int = DEFAULT_KEEPALIVE,
    user: str | None = None,
    password: str | None = None,
    will_topic: str | None = None,
    will_qos: int = 0,
    will_retain: bool = False,
    will_message: str | bytes | None = None,
    clean_session: bool = True,
) -> bytes:
    """Build a CONNECT packet; the password is sent only together with a user."""
    if not 0 <= keep_alive <= 0xFFFF:
        raise ValueError(f"keep alive out of range: {keep_alive}")
    if not 0 <= will_qos <= 2:
        raise ValueError(f"invalid will QoS: {will_qos}")

    flags = 0
    if will_topic:
        flags = _CONNECT_WILL | (will_qos << 3) | (int(bool(will_retain)) << 5)
    if clean_session:
        flags |= _CONNECT_CLEAN_SESSION
    if user is not None:
        flags |= _CONNECT_USER
        if password is not None:
            flags |= _CONNECT_PASSWORD

    body = bytearray(encode_string(PROTOCOL_NAME))
    body.append(PROTOCOL_LEVEL)
    body.append(flags)
    body += keep_alive.to_bytes(2, "big")
    body += encode_string(client_id)
    if will_topic:
        body += encode_string(will_topic)
        body += encode_string(will_message if will_message is not None else "")
    if user is not None:
        body += encode_string(user)
        if password is not None:
            body += encode_string(password)
    return build_packet(PacketType.CONNECT, bytes(body))


def build_publish(topic: str, payload: str | bytes = b"", retained: bool = False) -> bytes:
    """Build a QoS 0 PUBLISH packet."""
    header = PacketType.PUBLISH | (1 if retained else 0)
    return build_packet(header, encode_string(topic) + _to_bytes(payload))


def build_subscribe(msg_id: int, topic: str, qos: int = 0) -> bytes:
    """Build a SUBSCRIBE packet for one topic; only QoS 0 and 1 are accepted."""
    if not 0 <= qos <= 1:
        raise ValueError(f"invalid subscription QoS: {qos}")
    body = _check_msg_id(msg_id) + encode_string(topic) + bytes([qos])
    return build_packet(PacketType.SUBSCRIBE | QOS1, body)


def build_unsubscribe(msg_id: int, topic: str) -> bytes:
    """Build an UNSUBSCRIBE packet for one topic."""
    body = _check_msg_id(msg_id) + encode_string(topic)
    return build_packet(PacketType.UNSUBSCRIBE | QOS1, body)


def build_puback(msg_id: int) -> bytes:
    """Build the acknowledgement of a QoS 1 PUBLISH."""
    return build_packet(PacketType.PUBACK, _check_msg_id(msg_id))