"""JSON writer and reader, MQTT 3.1.1 packet encoder and a small MQTT client."""

__version__ = "0.1.0"

__all__ = ["codec", "serializer", "deserializer", "packet", "client"]