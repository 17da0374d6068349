"""A small blocking MQTT 3.1.1 client driven by repeated calls to ``loop``."""

from __future__ import annotations

import select
import socket
import time
from collections.abc import Callable
from typing import Any, Protocol

from thinglink.packet import (
    DEFAULT_BUFFER_SIZE,
    DEFAULT_KEEPALIVE,
    DEFAULT_SOCKET_TIMEOUT,
    MAX_HEADER_SIZE,
    QOS1,
    ClientState,
    PacketType,
    build_connect,
    build_packet,
    build_puback,
    build_publish,
    build_subscribe,
    build_unsubscribe,
    encode_remaining_length,
    encode_string,
)

# Bytes a CONNECT uses before its first string: protocol name and level, flags, keep alive.
_CONNECT_PREFIX_SIZE = 7 + 1 + 2


class MqttError(Exception):
    """Raised when the client cannot complete an operation."""

    def __init__(self, message: str, state: ClientState | int | None = None) -> None:
        super().__init__(message)
        self.state = state


class Transport(Protocol):
    def connect(self, host: str, port: int) -> bool: ...
    def connected(self) -> bool: ...
    def available(self) -> int: ...
    def read(self) -> int: ...
    def write(self, data: bytes | int) -> int: ...
    def flush(self) -> None: ...
    def stop(self) -> None: ...


class SocketTransport:
    """A TCP byte stream with non-blocking checks for incoming data."""

    def __init__(self, timeout: float | None = None) -> None:
        self._timeout = timeout
        self._sock: socket.socket | None = None
        self._received = bytearray()
        self._open = False

    def connect(self, host: str, port: int) -> bool:
        """Open a connection; return False if it cannot be established."""
        self.stop()
        try:
            self._sock = socket.create_connection((host, port), timeout=self._timeout)
        except OSError:
            self._sock = None
            return False
        self._sock.settimeout(self._timeout)
        self._open = True
        return True

    def _fill(self) -> None:
        if self._sock is None or not self._open:
            return
        try:
            readable, _, _ = select.select([self._sock], [], [], 0)
            if not readable:
                return
            data = self._sock.recv(4096)
        except (OSError, ValueError):
            data = b""
        if data:
            self._received += data
        else:
            self._open = False

    def connected(self) -> bool:
        """True while the peer is connected or unread data remains."""
        self._fill()
        return self._open or bool(self._received)

    def available(self) -> int:
        """Number of bytes that can be read without waiting."""
        self._fill()
        return len(self._received)

    def read(self) -> int:
        """Return the next byte, or -1 if none is waiting."""
        if not self._received:
            self._fill()
        if not self._received:
            return -1
        byte = self._received[0]
        del self._received[0]
        return byte

    def write(self, data: bytes | int) -> int:
        """Send bytes; return how many were sent (0 on failure)."""
        if isinstance(data, int):
            data = bytes([data])
        if self._sock is None:
            return 0
        try:
            self._sock.sendall(data)
        except OSError:
            self._open = False
            return 0
        return len(data)

    def flush(self) -> None:
        """Discard input that has been received but not read."""
        self._received.clear()

    def stop(self) -> None:
        """Close the connection and drop pending input."""
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError:
                pass
        self._sock = None
        self._open = False
        self._received.clear()


def _bounded(data: str | bytes, limit: int) -> bytes:
    raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)
    return raw.split(b"\0", 1)[0][:limit]


class MqttClient:
    """MQTT client that keeps a session alive over a byte transport."""

    def __init__(
        self,
        transport: Transport | None = None,
        host: str | None = None,
        port: int = 1883,
        callback: Callable[[str, bytes], Any] | None = None,
        stream: Any = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        keep_alive: int = DEFAULT_KEEPALIVE,
        socket_timeout: float = DEFAULT_SOCKET_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = 0.001,
    ) -> None:
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        self.transport: Transport = transport if transport is not None else SocketTransport()
        self.host = host
        self.port = port
        self.callback = callback
        self.stream = stream
        self.keep_alive = keep_alive
        self.socket_timeout = socket_timeout
        self._buffer_size = buffer_size
        self._clock = clock
        self._poll_interval = poll_interval
        self._state: int = ClientState.DISCONNECTED
        self._next_msg_id = 0
        self._last_in = 0.0
        self._last_out = 0.0
        self._ping_outstanding = False

    def __enter__(self) -> MqttClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self.connected():
            self.disconnect()

    def buffer_size(self) -> int:
        """Largest packet, in bytes, the client sends or keeps."""
        return self._buffer_size

    def state(self) -> ClientState | int:
        """Current connection state; unknown broker refusal codes come back as ints."""
        try:
            return ClientState(self._state)
        except ValueError:
            return self._state

    def connected(self) -> bool:
        """True if the session is up; notices a dropped connection."""
        if not self.transport.connected():
            if self._state == ClientState.CONNECTED:
                self._state = ClientState.CONNECTION_LOST
                self.transport.flush()
                self.transport.stop()
            return False
        return self._state == ClientState.CONNECTED

    def connect(
        self,
        client_id: str,
        user: str | None = None,
        password: str | None = None,
        will_topic: str | None = None,
        will_qos: int = 0,
        will_retain: bool = False,
        will_message: str | bytes | None = None,
        clean_session: bool = True,
    ) -> None:
        """Open the session; raise MqttError if the broker cannot be reached or refuses."""
        if self.connected():
            return

        if self.transport.connected():
            reached = True
        else:
            if self.host is None:
                raise ValueError("no server host set")
            reached = self.transport.connect(self.host, self.port)
        if not reached:
            self._state = ClientState.CONNECT_FAILED
            raise MqttError("cannot reach the server", self._state)

        self._next_msg_id = 1
        strings = [client_id]
        if will_topic:
            strings += [will_topic, will_message if will_message is not None else ""]
        if user is not None:
            strings.append(user)
            if password is not None:
                strings.append(password)
        length = MAX_HEADER_SIZE + _CONNECT_PREFIX_SIZE
        for text in strings:
            size = len(_bounded(text, self._buffer_size))
            if length + 2 + size > self._buffer_size:
                self.transport.stop()
                raise MqttError("connect packet exceeds the buffer size", self._state)
            length += 2 + size

        packet = build_connect(
            client_id,
            self.keep_alive,
            user,
            password,
            will_topic,
            will_qos,
            will_retain,
            will_message,
            clean_session,
        )
        self._write_packet(packet)
        self._last_in = self._last_out = self._clock()

        while not self.transport.available():
            if self._clock() - self._last_in >= self.socket_timeout:
                self._state = ClientState.CONNECTION_TIMEOUT
                self.transport.stop()
                raise MqttError("no answer from the server", self._state)
            self._idle()

        received = self._read_packet()
        if received is not None and len(received[0]) == 4:
            packet_bytes = received[0]
            if packet_bytes[3] == 0:
                self._last_in = self._clock()
                self._ping_outstanding = False
                self._state = ClientState.CONNECTED
                return
            self._state = packet_bytes[3]
        self.transport.stop()
        raise MqttError("connection refused", self.state())

    def disconnect(self) -> None:
        """Send DISCONNECT and close the transport."""
        self.transport.write(build_packet(PacketType.DISCONNECT))
        self._state = ClientState.DISCONNECTED
        self.transport.flush()
        self.transport.stop()
        self._last_in = self._last_out = self._clock()

    def publish(self, topic: str, payload: str | bytes = b"", retained: bool = False) -> None:
        """Send a QoS 0 message; a str payload ends at its first NUL."""
        if not self.connected():
            raise MqttError("not connected", self.state())
        if isinstance(payload, str):
            body = _bounded(payload, self._buffer_size)
        else:
            body = bytes(payload)
        topic_size = len(_bounded(topic, self._buffer_size))
        if self._buffer_size < MAX_HEADER_SIZE + 2 + topic_size + len(body):
            raise ValueError("message exceeds the buffer size")
        if not self._write_packet(build_publish(topic, body, retained)):
            raise MqttError("publish was not fully written", self.state())

    def begin_publish(self, topic: str, length: int, retained: bool = False) -> None:
        """Send the header of a message whose ``length`` payload bytes follow via ``write``."""
        if not self.connected():
            raise MqttError("not connected", self.state())
        header = PacketType.PUBLISH | (1 if retained else 0)
        topic_field = encode_string(topic)
        head = bytes([header]) + encode_remaining_length(length + len(topic_field)) + topic_field
        written = self.transport.write(head)
        self._last_out = self._clock()
        if written != len(head):
            raise MqttError("publish header was not fully written", self.state())

    def write(self, data: bytes | int) -> int:
        """Send payload bytes after ``begin_publish``; return how many were sent."""
        self._last_out = self._clock()
        return self.transport.write(data)

    def end_publish(self) -> bool:
        """Finish a message started by ``begin_publish``; its bytes are already sent."""
        return True

    def subscribe(self, topic: str, qos: int = 0) -> int:
        """Subscribe to one topic at QoS 0 or 1; return the message id used."""
        if qos > 1:
            raise ValueError(f"invalid subscription QoS: {qos}")
        if self._buffer_size < 9 + len(_bounded(topic, self._buffer_size)):
            raise ValueError("topic exceeds the buffer size")
        if not self.connected():
            raise MqttError("not connected", self.state())
        msg_id = self._take_msg_id()
        if not self._write_packet(build_subscribe(msg_id, topic, qos)):
            raise MqttError("subscribe was not fully written", self.state())
        return msg_id

    def unsubscribe(self, topic: str) -> int:
        """Unsubscribe from one topic; return the message id used."""
        if self._buffer_size < 9 + len(_bounded(topic, self._buffer_size)):
            raise ValueError("topic exceeds the buffer size")
        if not self.connected():
            raise MqttError("not connected", self.state())
        msg_id = self._take_msg_id()
        if not self._write_packet(build_unsubscribe(msg_id, topic)):
            raise MqttError("unsubscribe was not fully written", self.state())
        return msg_id

    def loop(self) -> bool:
        """Handle keep-alive and at most one incoming packet; False once disconnected."""
        if not self.connected():
            return False
        now = self._clock()
        keep_alive = self.keep_alive
        if now - self._last_in > keep_alive or now - self._last_out > keep_alive:
            if self._ping_outstanding:
                self._state = ClientState.CONNECTION_TIMEOUT
                self.transport.stop()
                return False
            self.transport.write(build_packet(PacketType.PINGREQ))
            self._last_out = self._last_in = now
            self._ping_outstanding = True

        if self.transport.available():
            received = self._read_packet()
            if received:
                packet, llen = received
                self._last_in = now
                kind = packet[0] & 0xF0
                if kind == PacketType.PUBLISH:
                    if self.callback is not None:
                        self._deliver(packet, llen, now)
                elif kind == PacketType.PINGREQ:
                    self.transport.write(build_packet(PacketType.PINGRESP))
                elif kind == PacketType.PINGRESP:
                    self._ping_outstanding = False
            elif not self.connected():
                return False
        return True

    def _deliver(self, packet: bytes, llen: int, now: float) -> None:
        topic_length = (packet[llen + 1] << 8) + packet[llen + 2]
        topic_start = llen + 3
        topic = packet[topic_start : topic_start + topic_length].decode("utf-8", "replace")
        rest = topic_start + topic_length
        if (packet[0] & 0x06) == QOS1:
            msg_id = (packet[rest] << 8) + packet[rest + 1]
            self.callback(topic, bytes(packet[rest + 2 :]))
            self.transport.write(build_puback(msg_id))
            self._last_out = now
        else:
            self.callback(topic, bytes(packet[rest:]))

    def _take_msg_id(self) -> int:
        self._next_msg_id = (self._next_msg_id + 1) & 0xFFFF
        if self._next_msg_id == 0:
            self._next_msg_id = 1
        return self._next_msg_id

    def _write_packet(self, packet: bytes) -> bool:
        written = self.transport.write(packet)
        self._last_out = self._clock()
        return written == len(packet)

    def _idle(self) -> None:
        if self._poll_interval > 0:
            time.sleep(self._poll_interval)

    def _read_byte(self) -> int | None:
        start = self._clock()
        while not self.transport.available():
            if self._clock() - start >= self.socket_timeout:
                return None
            self._idle()
        return self.transport.read() & 0xFF

    def _read_packet(self) -> tuple[bytes, int] | None:
        """Read one packet; return its kept bytes and the size of its length field."""
        first = self._read_byte()
        if first is None:
            return None
        kept = bytearray([first])
        is_publish = (first & 0xF0) == PacketType.PUBLISH
        multiplier = 1
        length = 0
        while True:
            if len(kept) == 5:
                self._state = ClientState.DISCONNECTED
                self.transport.stop()
                return None
            digit = self._read_byte()
            if digit is None:
                return None
            kept.append(digit)
            length += (digit & 0x7F) * multiplier
            multiplier <<= 7
            if not digit & 0x80:
                break
        llen = len(kept) - 1

        start = 0
        skip = 0
        if is_publish:
            for _ in range(2):
                digit = self._read_byte()
                if digit is None:
                    return None
                kept.append(digit)
            skip = (kept[llen + 1] << 8) + kept[llen + 2]
            start = 2
            if first & QOS1:
                skip += 2

        index = len(kept)
        for _ in range(start, length):
            digit = self._read_byte()
            if digit is None:
                return None
            if self.stream is not None and is_publish and index - llen - 2 > skip:
                self.stream.write(bytes([digit]))
            if len(kept) < self._buffer_size:
                kept.append(digit)
            index += 1

        if self.stream is None and index > self._buffer_size:
            return None
        return bytes(kept), llen