import io
import socket

import pytest

from thinglink.client import MqttClient, MqttError, SocketTransport
from thinglink.packet import (
    QOS1,
    ClientState,
    PacketType,
    build_connect,
    build_packet,
    build_puback,
    build_publish,
    build_subscribe,
    build_unsubscribe,
    encode_string,
)

CONNACK_OK = bytes([0x20, 0x02, 0x00, 0x00])


class FakeTransport:
    def __init__(self, reachable=True):
        self.reachable = reachable
        self.open = False
        self.inbound = bytearray()
        self.outbound = bytearray()
        self.stopped = 0
        self.address = None

    def feed(self, data):
        self.inbound += data

    def connect(self, host, port):
        self.address = (host, port)
        self.open = self.reachable
        return self.reachable

    def connected(self):
        return self.open

    def available(self):
        return len(self.inbound)

    def read(self):
        if not self.inbound:
            return -1
        byte = self.inbound[0]
        del self.inbound[0]
        return byte

    def write(self, data):
        if isinstance(data, int):
            data = bytes([data])
        self.outbound += data
        return len(data)

    def flush(self):
        pass

    def stop(self):
        self.open = False
        self.stopped += 1


class Clock:
    def __init__(self, step=0.0):
        self.now = 0.0
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


def make_client(transport=None, clock=None, **kwargs):
    transport = transport or FakeTransport()
    client = MqttClient(
        transport,
        host="broker.example.com",
        clock=clock or Clock(),
        poll_interval=0,
        **kwargs,
    )
    return client, transport


def connected_client(**kwargs):
    client, transport = make_client(**kwargs)
    transport.feed(CONNACK_OK)
    client.connect("dev")
    transport.outbound.clear()
    return client, transport


def test_connect_sends_connect_packet_and_reaches_connected():
    client, transport = make_client()
    transport.feed(CONNACK_OK)
    client.connect("dev")
    assert transport.address == ("broker.example.com", 1883)
    assert bytes(transport.outbound) == build_connect("dev", 15)
    assert transport.outbound[0] == 0x10
    assert client.connected() is True
    assert client.state() == ClientState.CONNECTED


def test_connect_refused_reports_broker_code():
    client, transport = make_client()
    transport.feed(bytes([0x20, 0x02, 0x00, 0x05]))
    with pytest.raises(MqttError) as info:
        client.connect("dev")
    assert info.value.state == ClientState.CONNECT_UNAUTHORIZED
    assert client.state() == ClientState.CONNECT_UNAUTHORIZED
    assert transport.open is False


def test_connect_times_out_without_answer():
    client, transport = make_client(clock=Clock(step=1.0), socket_timeout=2)
    with pytest.raises(MqttError):
        client.connect("dev")
    assert client.state() == ClientState.CONNECTION_TIMEOUT
    assert transport.stopped == 1


def test_connect_fails_when_server_unreachable():
    client, _ = make_client(transport=FakeTransport(reachable=False))
    with pytest.raises(MqttError):
        client.connect("dev")
    assert client.state() == ClientState.CONNECT_FAILED


def test_connect_rejects_client_id_larger_than_buffer():
    client, transport = make_client(buffer_size=20)
    transport.feed(CONNACK_OK)
    with pytest.raises(MqttError):
        client.connect("abcdefgh")
    assert transport.outbound == bytearray()
    assert transport.open is False


def test_connect_when_already_connected_sends_nothing():
    client, transport = connected_client()
    client.connect("dev")
    assert transport.outbound == bytearray()


def test_publish_writes_publish_packet():
    client, transport = connected_client()
    client.publish("v1/devices/me/telemetry", '{"temperature":21.5}')
    assert bytes(transport.outbound) == build_publish(
        "v1/devices/me/telemetry", b'{"temperature":21.5}'
    )


def test_publish_retained_sets_flag():
    client, transport = connected_client()
    client.publish("t", b"x", retained=True)
    assert transport.outbound[0] == 0x31


def test_publish_when_disconnected_raises():
    client, _ = make_client()
    with pytest.raises(MqttError):
        client.publish("t", b"x")


def test_subscribe_and_unsubscribe_use_increasing_ids():
    client, transport = connected_client()
    first = client.subscribe("a/b", 1)
    assert bytes(transport.outbound) == build_subscribe(first, "a/b", 1)
    transport.outbound.clear()
    second = client.unsubscribe("a/b")
    assert second == first + 1
    assert bytes(transport.outbound) == build_unsubscribe(second, "a/b")


def test_subscribe_rejects_qos_two():
    client, _ = connected_client()
    with pytest.raises(ValueError):
        client.subscribe("a", 2)


def test_loop_delivers_qos0_message():
    received = []
    client, transport = connected_client(callback=lambda t, p: received.append((t, p)))
    transport.feed(build_publish("a/b", b"hi"))
    assert client.loop() is True
    assert received == [("a/b", b"hi")]
    assert transport.outbound == bytearray()


def test_loop_acknowledges_qos1_message():
    received = []
    client, transport = connected_client(callback=lambda t, p: received.append((t, p)))
    body = encode_string("t") + b"\x00\x07" + b"data"
    transport.feed(build_packet(PacketType.PUBLISH | QOS1, body))
    assert client.loop() is True
    assert received == [("t", b"data")]
    assert bytes(transport.outbound) == build_puback(7)


def test_loop_sends_ping_then_times_out():
    clock = Clock()
    client, transport = connected_client(clock=clock)
    clock.now = 16
    assert client.loop() is True
    assert bytes(transport.outbound) == b"\xc0\x00"
    clock.now = 32
    assert client.loop() is False
    assert client.state() == ClientState.CONNECTION_TIMEOUT


def test_ping_response_clears_outstanding_ping():
    clock = Clock()
    client, transport = connected_client(clock=clock)
    clock.now = 16
    client.loop()
    transport.feed(b"\xd0\x00")
    assert client.loop() is True
    clock.now = 32
    assert client.loop() is True
    assert bytes(transport.outbound) == b"\xc0\x00\xc0\x00"


def test_loop_answers_ping_request():
    client, transport = connected_client()
    transport.feed(b"\xc0\x00")
    assert client.loop() is True
    assert bytes(transport.outbound) == b"\xd0\x00"


def test_oversized_packet_is_ignored():
    received = []
    client, transport = connected_client(
        callback=lambda t, p: received.append(p), buffer_size=32
    )
    transport.feed(build_publish("t", b"z" * 64))
    assert client.loop() is True
    assert received == []
    assert transport.inbound == bytearray()


def test_stream_receives_full_payload():
    sink = io.BytesIO()
    payload = b"p" * 40
    client, transport = connected_client(stream=sink, buffer_size=32)
    transport.feed(build_publish("t", payload))
    assert client.loop() is True
    assert sink.getvalue() == payload


def test_invalid_remaining_length_drops_connection():
    client, transport = connected_client()
    transport.feed(b"\x30\xff\xff\xff\xff")
    assert client.loop() is False
    assert client.state() == ClientState.DISCONNECTED
    assert transport.open is False


def test_lost_transport_is_noticed():
    client, transport = connected_client()
    transport.open = False
    assert client.connected() is False
    assert client.state() == ClientState.CONNECTION_LOST
    assert client.loop() is False


def test_disconnect_sends_disconnect_packet():
    client, transport = connected_client()
    client.disconnect()
    assert bytes(transport.outbound) == b"\xe0\x00"
    assert client.state() == ClientState.DISCONNECTED
    assert transport.open is False


def test_context_manager_disconnects():
    client, transport = connected_client()
    with client:
        pass
    assert bytes(transport.outbound) == b"\xe0\x00"


def test_begin_publish_and_write_match_whole_publish():
    client, transport = connected_client()
    payload = b"streamed payload"
    client.begin_publish("s/t", len(payload))
    assert client.write(payload[:5]) == 5
    assert client.write(payload[5:]) == len(payload) - 5
    assert client.end_publish() is True
    assert bytes(transport.outbound) == build_publish("s/t", payload)


def test_buffer_size_is_reported_and_validated():
    client, _ = make_client(buffer_size=512)
    assert client.buffer_size() == 512
    with pytest.raises(ValueError):
        MqttClient(FakeTransport(), buffer_size=0)


def test_socket_transport_round_trip():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    port = server.getsockname()[1]
    transport = SocketTransport(timeout=5)
    try:
        assert transport.connect("127.0.0.1", port) is True
        peer, _ = server.accept()
        with peer:
            assert transport.write(b"abc") == 3
            assert peer.recv(3) == b"abc"
            peer.sendall(b"xy")
            for _ in range(1000):
                if transport.available() == 2:
                    break
            assert transport.available() == 2
            assert transport.read() == ord("x")
            assert transport.read() == ord("y")
            assert transport.read() == -1
            assert transport.connected() is True
        transport.stop()
        assert transport.connected() is False
        assert transport.write(b"z") == 0
    finally:
        transport.stop()
        server.close()


def test_socket_transport_connect_failure():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    port = server.getsockname()[1]
    server.close()
    transport = SocketTransport(timeout=1)
    assert transport.connect("127.0.0.1", port) is False
    assert transport.connected() is False