# thinglink

Small building blocks for devices that push telemetry to an MQTT broker:

- `thinglink.serializer` and `thinglink.deserializer`: a JSON writer and a
  lenient JSON reader (single-quoted strings, unquoted object keys,
  filtering, a nesting limit);
- `thinglink.packet`: an MQTT 3.1.1 packet encoder;
- `thinglink.client`: a minimal blocking MQTT client over a plain TCP socket.

The package has no dependencies beyond the standard library.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Writing JSON

```python
from thinglink.serializer import serialize_json, serialize_json_pretty, measure_json, RawJson

serialize_json({"temperature": 21.5, "ok": True})
# '{"temperature":21.5,"ok":true}'

measure_json({"a": [1, 2]})           # UTF-8 byte length of the minified output
print(serialize_json_pretty([1, 2]))  # two-space indent, CRLF line breaks

serialize_json({"raw": RawJson("[1,2]")})  # RawJson text is copied as-is
```

Accepted values are `None`, `bool`, `int`, `float`, `str`, `RawJson`,
mappings with `str` keys, lists and tuples; anything else raises `TypeError`.
Floats are written by `format_float` with up to nine decimal places and an
exponent for very large or very small values; NaN and infinities are written
as `null`. `format_string` quotes and escapes a single string.
`measure_json_pretty` gives the length of the indented form.

## Reading JSON

```python
from thinglink.deserializer import deserialize_json, DeserializationError, ErrorCode

deserialize_json("{temperature: 21.5, 'unit': 'C'}")
# {'temperature': 21.5, 'unit': 'C'}

deserialize_json('{"a": 1, "b": 2}', filter={"a": True})
# {'a': 1}

try:
    deserialize_json("[[1]]", nesting_limit=1)
except DeserializationError as error:
    assert error.code is ErrorCode.TOO_DEEP
```

`deserialize_json(source, filter=None, nesting_limit=10)` accepts a `str`,
bytes, or an object with a `read()` method. A filter of `True` keeps
everything; a dict keeps only the named members (`"*"` matches any key); a
list applies its first element to every array item. `JsonDeserializer` does
the same work as a reusable object whose `parse()` returns the value.

Failures raise `DeserializationError` (a `ValueError`) whose `code` is one of
`ErrorCode.EMPTY_INPUT`, `INCOMPLETE_INPUT`, `INVALID_INPUT` or `TOO_DEEP`.
Text after a complete array, object or string is not checked; trailing text
after a bare number is reported as invalid input.

Lower-level helpers live in `thinglink.codec`: `escape_char`,
`unescape_char`, `is_high_surrogate`, `is_low_surrogate`, `encode_codepoint`
and the `Utf16Codepoint` accumulator used to decode `\uXXXX` escapes,
including surrogate pairs.

## MQTT packets

`thinglink.packet` builds the bytes of MQTT 3.1.1 control packets:

```python
from thinglink.packet import build_publish, build_subscribe, build_connect

frame = build_publish("v1/devices/me/telemetry", b'{"humidity":40}', False)
sub = build_subscribe(1, "v1/devices/me/attributes", 0)
hello = build_connect("sensor-1", keep_alive=15)
```

`build_unsubscribe`, `build_puback`, `encode_remaining_length`,
`encode_string` and `build_packet` are also available. `PacketType` holds the
control packet types and `ClientState` the connection states a client can
report, including the broker's refusal codes. Out-of-range values raise
`ValueError`.

## MQTT client

```python
from thinglink.client import MqttClient, MqttError, SocketTransport

def on_message(topic: str, payload: bytes) -> None:
    print(topic, payload)

client = MqttClient(SocketTransport(), "broker.example.com", 1883, callback=on_message)
password = "password"
try:
    client.connect("sensor-1", user="device-user", password=password)
    client.publish("v1/devices/me/telemetry", '{"temperature":21.5}')
    client.subscribe("v1/devices/me/attributes", 0)
    while client.loop():
        ...
except MqttError as error:
    print("MQTT failure:", error, error.state)
finally:
    if client.connected():
        client.disconnect()
```

`connect`, `publish`, `subscribe` and `unsubscribe` raise `MqttError` when
the client is not connected, the broker cannot be reached or refuses, or a
packet is not fully written; messages larger than `buffer_size()` raise
`ValueError`. `subscribe` and `unsubscribe` return the message id they used.

`loop()` must be called regularly: it sends keep-alive pings, answers pings
from the broker, hands incoming messages to the callback and acknowledges
QoS 1 messages. It returns `False` once the session is gone; `state()`
reports the last `ClientState`. Large payloads can be sent with
`begin_publish`, `write` and `end_publish`. The client can also be used as a
context manager, which disconnects on exit.

Any object with `connect`, `connected`, `available`, `read`, `write`, `flush`
and `stop` methods can stand in for `SocketTransport`.

## What it does not do

There is no command-line tool. The client publishes at QoS 0 only, subscribes
at QoS 0 or 1, has no TLS, and does not reconnect by itself. The JSON reader
does not accept comments.