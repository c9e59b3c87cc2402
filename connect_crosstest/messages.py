# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Protobuf message types for the test service and the server descriptor.

The schemas are assembled as ``FileDescriptorProto`` values and loaded into
a private descriptor pool at import time, so no generated ``_pb2`` modules
are needed.  Field numbers, package names and service names match the
canonical ``grpc.testing`` interop schema, so the classes are wire
compatible with any other implementation of the test service.

Usage::

    from connect_crosstest.messages import SimpleRequest, Payload, COMPRESSABLE

    req = SimpleRequest(response_type=COMPRESSABLE, response_size=1)

"""

from __future__ import annotations

from typing import Any

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.descriptor import FileDescriptor, ServiceDescriptor

__all__ = [
    "COMPRESSABLE",
    "POOL",
    "SERVER_FILE",
    "TEST_FILE",
    "EchoStatus",
    "Empty",
    "ErrorDetail",
    "HTTPVersion",
    "Payload",
    "PayloadType",
    "Protocol",
    "ProtocolSupport",
    "ResponseParameters",
    "ServerMetadata",
    "SimpleRequest",
    "SimpleResponse",
    "StreamingInputCallRequest",
    "StreamingInputCallResponse",
    "StreamingOutputCallRequest",
    "StreamingOutputCallResponse",
    "TEST_SERVICE",
    "UNIMPLEMENTED_SERVICE",
]

_F = descriptor_pb2.FieldDescriptorProto

TEST_PACKAGE = "grpc.testing"
SERVER_PACKAGE = "server.v1"


def _json_name(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _field(
    name: str,
    number: int,
    field_type: int,
    *,
    type_name: str | None = None,
    repeated: bool = False,
) -> descriptor_pb2.FieldDescriptorProto:
    field = _F(
        name=name,
        number=number,
        type=field_type,
        label=_F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL,
        json_name=_json_name(name),
    )
    if type_name is not None:
        field.type_name = type_name
    return field


def _message(name: str, *fields: descriptor_pb2.FieldDescriptorProto) -> descriptor_pb2.DescriptorProto:
    return descriptor_pb2.DescriptorProto(name=name, field=list(fields))


def _enum(name: str, *values: str) -> descriptor_pb2.EnumDescriptorProto:
    return descriptor_pb2.EnumDescriptorProto(
        name=name,
        value=[descriptor_pb2.EnumValueDescriptorProto(name=v, number=i) for i, v in enumerate(values)],
    )


def _method(
    name: str,
    input_type: str,
    output_type: str,
    *,
    client_streaming: bool = False,
    server_streaming: bool = False,
    no_side_effects: bool = False,
) -> descriptor_pb2.MethodDescriptorProto:
    method = descriptor_pb2.MethodDescriptorProto(
        name=name,
        input_type=f".{TEST_PACKAGE}.{input_type}",
        output_type=f".{TEST_PACKAGE}.{output_type}",
        client_streaming=client_streaming,
        server_streaming=server_streaming,
    )
    if no_side_effects:
        method.options.idempotency_level = descriptor_pb2.MethodOptions.NO_SIDE_EFFECTS
    return method


def _test_file() -> descriptor_pb2.FileDescriptorProto:
    t = f".{TEST_PACKAGE}."
    messages = [
        _message("Empty"),
        _message(
            "Payload",
            _field("type", 1, _F.TYPE_ENUM, type_name=t + "PayloadType"),
            _field("body", 2, _F.TYPE_BYTES),
        ),
        _message(
            "EchoStatus",
            _field("code", 1, _F.TYPE_INT32),
            _field("message", 2, _F.TYPE_STRING),
        ),
        _message(
            "SimpleRequest",
            _field("response_type", 1, _F.TYPE_ENUM, type_name=t + "PayloadType"),
            _field("response_size", 2, _F.TYPE_INT32),
            _field("payload", 3, _F.TYPE_MESSAGE, type_name=t + "Payload"),
            _field("fill_username", 4, _F.TYPE_BOOL),
            _field("fill_oauth_scope", 5, _F.TYPE_BOOL),
            _field("response_status", 7, _F.TYPE_MESSAGE, type_name=t + "EchoStatus"),
            _field("fill_server_id", 9, _F.TYPE_BOOL),
        ),
        _message(
            "SimpleResponse",
            _field("payload", 1, _F.TYPE_MESSAGE, type_name=t + "Payload"),
            _field("username", 2, _F.TYPE_STRING),
            _field("oauth_scope", 3, _F.TYPE_STRING),
            _field("server_id", 4, _F.TYPE_STRING),
            _field("hostname", 6, _F.TYPE_STRING),
        ),
        _message(
            "StreamingInputCallRequest",
            _field("payload", 1, _F.TYPE_MESSAGE, type_name=t + "Payload"),
        ),
        _message(
            "StreamingInputCallResponse",
            _field("aggregated_payload_size", 1, _F.TYPE_INT32),
        ),
        _message(
            "ResponseParameters",
            _field("size", 1, _F.TYPE_INT32),
            _field("interval_us", 2, _F.TYPE_INT32),
        ),
        _message(
            "StreamingOutputCallRequest",
            _field("response_type", 1, _F.TYPE_ENUM, type_name=t + "PayloadType"),
            _field("response_parameters", 2, _F.TYPE_MESSAGE, type_name=t + "ResponseParameters", repeated=True),
            _field("payload", 3, _F.TYPE_MESSAGE, type_name=t + "Payload"),
            _field("response_status", 7, _F.TYPE_MESSAGE, type_name=t + "EchoStatus"),
        ),
        _message(
            "StreamingOutputCallResponse",
            _field("payload", 1, _F.TYPE_MESSAGE, type_name=t + "Payload"),
        ),
        _message(
            "ErrorDetail",
            _field("reason", 1, _F.TYPE_STRING),
            _field("domain", 2, _F.TYPE_STRING),
        ),
    ]
    test_service = descriptor_pb2.ServiceDescriptorProto(
        name="TestService",
        method=[
            _method("EmptyCall", "Empty", "Empty"),
            _method("UnaryCall", "SimpleRequest", "SimpleResponse"),
            _method("FailUnaryCall", "SimpleRequest", "SimpleResponse"),
            _method("CacheableUnaryCall", "SimpleRequest", "SimpleResponse", no_side_effects=True),
            _method(
                "StreamingOutputCall",
                "StreamingOutputCallRequest",
                "StreamingOutputCallResponse",
                server_streaming=True,
            ),
            _method(
                "FailStreamingOutputCall",
                "StreamingOutputCallRequest",
                "StreamingOutputCallResponse",
                server_streaming=True,
            ),
            _method(
                "StreamingInputCall",
                "StreamingInputCallRequest",
                "StreamingInputCallResponse",
                client_streaming=True,
            ),
            _method(
                "FullDuplexCall",
                "StreamingOutputCallRequest",
                "StreamingOutputCallResponse",
                client_streaming=True,
                server_streaming=True,
            ),
            _method(
                "HalfDuplexCall",
                "StreamingOutputCallRequest",
                "StreamingOutputCallResponse",
                client_streaming=True,
                server_streaming=True,
            ),
            _method("UnimplementedCall", "Empty", "Empty"),
            _method("UnimplementedStreamingOutputCall", "Empty", "Empty", server_streaming=True),
        ],
    )
    unimplemented_service = descriptor_pb2.ServiceDescriptorProto(
        name="UnimplementedService",
        method=[
            _method("UnimplementedCall", "Empty", "Empty"),
            _method("UnimplementedStreamingOutputCall", "Empty", "Empty", server_streaming=True),
        ],
    )
    return descriptor_pb2.FileDescriptorProto(
        name="grpc/testing/test.proto",
        package=TEST_PACKAGE,
        syntax="proto3",
        message_type=messages,
        enum_type=[_enum("PayloadType", "COMPRESSABLE")],
        service=[test_service, unimplemented_service],
    )


def _server_file() -> descriptor_pb2.FileDescriptorProto:
    s = f".{SERVER_PACKAGE}."
    return descriptor_pb2.FileDescriptorProto(
        name="server/v1/server.proto",
        package=SERVER_PACKAGE,
        syntax="proto3",
        enum_type=[
            _enum("Protocol", "PROTOCOL_UNSPECIFIED", "PROTOCOL_GRPC", "PROTOCOL_GRPC_WEB", "PROTOCOL_CONNECT"),
        ],
        message_type=[
            _message(
                "HTTPVersion",
                _field("major", 1, _F.TYPE_INT32),
                _field("minor", 2, _F.TYPE_INT32),
            ),
            _message(
                "ProtocolSupport",
                _field("protocol", 1, _F.TYPE_ENUM, type_name=s + "Protocol"),
                _field("http_versions", 2, _F.TYPE_MESSAGE, type_name=s + "HTTPVersion", repeated=True),
                _field("port", 3, _F.TYPE_STRING),
            ),
            _message(
                "ServerMetadata",
                _field("host", 1, _F.TYPE_STRING),
                _field("protocols", 2, _F.TYPE_MESSAGE, type_name=s + "ProtocolSupport", repeated=True),
            ),
        ],
    )


POOL = descriptor_pool.DescriptorPool()
"""Private pool holding the ``grpc.testing`` and ``server.v1`` schemas."""

POOL.AddSerializedFile(_test_file().SerializeToString())
POOL.AddSerializedFile(_server_file().SerializeToString())

TEST_FILE: FileDescriptor = POOL.FindFileByName("grpc/testing/test.proto")
SERVER_FILE: FileDescriptor = POOL.FindFileByName("server/v1/server.proto")

TEST_SERVICE: ServiceDescriptor = POOL.FindServiceByName(f"{TEST_PACKAGE}.TestService")
UNIMPLEMENTED_SERVICE: ServiceDescriptor = POOL.FindServiceByName(f"{TEST_PACKAGE}.UnimplementedService")


def _message_class(full_name: str) -> Any:
    return message_factory.GetMessageClass(POOL.FindMessageTypeByName(full_name))


Empty: Any = _message_class("grpc.testing.Empty")
Payload: Any = _message_class("grpc.testing.Payload")
EchoStatus: Any = _message_class("grpc.testing.EchoStatus")
SimpleRequest: Any = _message_class("grpc.testing.SimpleRequest")
SimpleResponse: Any = _message_class("grpc.testing.SimpleResponse")
StreamingInputCallRequest: Any = _message_class("grpc.testing.StreamingInputCallRequest")
StreamingInputCallResponse: Any = _message_class("grpc.testing.StreamingInputCallResponse")
ResponseParameters: Any = _message_class("grpc.testing.ResponseParameters")
StreamingOutputCallRequest: Any = _message_class("grpc.testing.StreamingOutputCallRequest")
StreamingOutputCallResponse: Any = _message_class("grpc.testing.StreamingOutputCallResponse")
ErrorDetail: Any = _message_class("grpc.testing.ErrorDetail")

HTTPVersion: Any = _message_class("server.v1.HTTPVersion")
ProtocolSupport: Any = _message_class("server.v1.ProtocolSupport")
ServerMetadata: Any = _message_class("server.v1.ServerMetadata")

PayloadType = POOL.FindEnumTypeByName("grpc.testing.PayloadType")
"""Enum descriptor; only ``COMPRESSABLE`` is defined."""

COMPRESSABLE: int = PayloadType.values_by_name["COMPRESSABLE"].number

Protocol = POOL.FindEnumTypeByName("server.v1.Protocol")
"""Enum descriptor for the protocols a server advertises."""
