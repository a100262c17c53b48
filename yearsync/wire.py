"""Protobuf codec for the year-history endpoint.

The message schema is declared here as a descriptor and compiled at import
time, so no generated ``_pb2`` module is needed. Callers only see the
dataclasses from :mod:`yearsync.types`; protobuf objects never leave this
module.

Schema (package ``api``)::

    message YearHistoryRequest { int64 device_time = 1; int32 version = 2;
                                 int32 year = 3; bool count = 4; }
    message HistoryChange      { string episode = 1; string podcast = 2;
                                 int64 modified_at = 3; }
    message HistoryResponse    { repeated HistoryChange changes = 1; }
    message YearHistoryResponse { int64 count = 1; HistoryResponse history = 2; }
"""

import logging

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError as ProtobufDecodeError
from google.protobuf.message import EncodeError as ProtobufEncodeError

from yearsync.protocols import DecodeError, EncodeError
from yearsync.types import DiffResponse, HistoryChange, ProbeResponse, SyncRequest

logger = logging.getLogger(__name__)

_FIELD = descriptor_pb2.FieldDescriptorProto
_OPTIONAL = _FIELD.LABEL_OPTIONAL
_REPEATED = _FIELD.LABEL_REPEATED

# (message name, [(field name, number, type, label, type name)])
_MESSAGES = [
    (
        "YearHistoryRequest",
        [
            ("device_time", 1, _FIELD.TYPE_INT64, _OPTIONAL, None),
            ("version", 2, _FIELD.TYPE_INT32, _OPTIONAL, None),
            ("year", 3, _FIELD.TYPE_INT32, _OPTIONAL, None),
            ("count", 4, _FIELD.TYPE_BOOL, _OPTIONAL, None),
        ],
    ),
    (
        "HistoryChange",
        [
            ("episode", 1, _FIELD.TYPE_STRING, _OPTIONAL, None),
            ("podcast", 2, _FIELD.TYPE_STRING, _OPTIONAL, None),
            ("modified_at", 3, _FIELD.TYPE_INT64, _OPTIONAL, None),
        ],
    ),
    (
        "HistoryResponse",
        [
            ("changes", 1, _FIELD.TYPE_MESSAGE, _REPEATED, ".api.HistoryChange"),
        ],
    ),
    (
        "YearHistoryResponse",
        [
            ("count", 1, _FIELD.TYPE_INT64, _OPTIONAL, None),
            ("history", 2, _FIELD.TYPE_MESSAGE, _OPTIONAL, ".api.HistoryResponse"),
        ],
    ),
]


def _build_pool() -> descriptor_pool.DescriptorPool:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="yearsync/api.proto", package="api", syntax="proto3"
    )
    for message_name, fields in _MESSAGES:
        message = file_proto.message_type.add(name=message_name)
        for name, number, field_type, label, type_name in fields:
            field = message.field.add(name=name, number=number, type=field_type, label=label)
            if type_name:
                field.type_name = type_name

    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(file_proto.SerializeToString())
    return pool


_POOL = _build_pool()
YearHistoryRequest = message_factory.GetMessageClass(
    _POOL.FindMessageTypeByName("api.YearHistoryRequest")
)
YearHistoryResponse = message_factory.GetMessageClass(
    _POOL.FindMessageTypeByName("api.YearHistoryResponse")
)


def encode_request(request: SyncRequest) -> bytes:
    """Serialize a SyncRequest.

    Raises:
        EncodeError: If a field is out of range for its wire type.
    """
    try:
        message = YearHistoryRequest(
            device_time=request.device_time_millis,
            version=request.version,
            year=request.year,
            count=request.count_only,
        )
        return message.SerializeToString()
    except (ProtobufEncodeError, ValueError, TypeError) as e:
        raise EncodeError(f"Cannot encode year history request: {e}") from e


def _parse_response(data: bytes):
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise DecodeError(f"Expected bytes, got {type(data).__name__}")
    message = YearHistoryResponse()
    try:
        message.ParseFromString(bytes(data))
    except (ProtobufDecodeError, ValueError) as e:
        raise DecodeError(f"Malformed year history response: {e}") from e
    return message


def decode_probe(data: bytes) -> ProbeResponse:
    """Decode a count-only response.

    Raises:
        DecodeError: If the bytes are not a valid response.
    """
    message = _parse_response(data)
    return ProbeResponse(count=int(message.count))


def decode_diff(data: bytes) -> DiffResponse:
    """Decode a full response into ordered HistoryChange records.

    Changes without an episode or podcast id cannot be resolved and are
    dropped with a warning.

    Raises:
        DecodeError: If the bytes are not a valid response.
    """
    message = _parse_response(data)
    changes = []
    for change in message.history.changes:
        if not change.episode or not change.podcast:
            logger.warning(
                f"Skipping history change with missing ids "
                f"(episode={change.episode!r}, podcast={change.podcast!r})"
            )
            continue
        changes.append(
            HistoryChange(
                episode_uuid=change.episode,
                podcast_uuid=change.podcast,
                modified_at_millis=int(change.modified_at),
            )
        )
    return DiffResponse(changes=tuple(changes))


def encode_response(count: int = 0, changes=()) -> bytes:
    """Serialize a YearHistoryResponse.

    The client never sends responses; this exists for local servers and
    fixtures that need to speak the same format.
    """
    message = YearHistoryResponse(count=count)
    for change in changes:
        message.history.changes.add(
            episode=change.episode_uuid,
            podcast=change.podcast_uuid,
            modified_at=change.modified_at_millis,
        )
    return message.SerializeToString()
