"""Protobuf wire codec for records crossing the gRPC boundary.

Requests and responses travel as ``google.protobuf.Struct`` messages. Struct
stores every number as a double, so integral numbers are turned back into
ints when a message is decoded; the registry has no fractional fields.
"""
import dataclasses
from typing import Any

from google.protobuf import json_format, struct_pb2

from .models import User, Message, GroupInfo, Notification


def encode(obj: Any) -> bytes:
    """Serialize a response or request dict into Struct bytes."""
    return to_struct(obj).SerializeToString()


def decode(data: bytes) -> dict:
    """Parse Struct bytes back into a plain dict."""
    return from_struct(struct_pb2.Struct.FromString(data or b""))


def to_struct(obj: Any) -> struct_pb2.Struct:
    return json_format.ParseDict(to_wire(obj or {}), struct_pb2.Struct())


def from_struct(msg: struct_pb2.Struct) -> dict:
    return _restore_ints(json_format.MessageToDict(msg))


def _restore_ints(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _restore_ints(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_restore_ints(v) for v in value]
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def to_wire(obj: Any) -> Any:
    """Convert registry records into Struct-compatible values."""
    if isinstance(obj, Notification):
        return obj.to_dict()
    if isinstance(obj, GroupInfo):
        return obj._asdict()
    if isinstance(obj, (User, Message)):
        return dataclasses.asdict(obj)
    if isinstance(obj, dict):
        return {k: to_wire(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_wire(v) for v in obj]
    return obj


def message_from_wire(rec: dict) -> Message:
    return Message(**rec)
