# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""The Connect protocol over HTTP/1.1.

Server (Falcon WSGI app on waitress)::

    from connect_crosstest.conformance import TestServiceImpl
    from connect_crosstest.connect import serve_connect

    server = serve_connect(TestServiceImpl())
    print(server.port)
    server.stop()

The app can also be mounted in any WSGI server through
:func:`make_wsgi_app`.

Client (httpx)::

    from connect_crosstest.connect import ConnectClient

    with ConnectClient("127.0.0.1", port) as client:
        ...
"""

from connect_crosstest.connect._client import ConnectClient
from connect_crosstest.connect._common import (
    STREAM_CONTENT_TYPE,
    UNARY_CONTENT_TYPE,
    decode_end_stream,
    encode_end_stream,
    encode_envelope,
    error_from_json,
    error_to_json,
    iter_envelopes,
)
from connect_crosstest.connect._server import ConnectServer, make_wsgi_app, serve_connect

__all__ = [
    "STREAM_CONTENT_TYPE",
    "UNARY_CONTENT_TYPE",
    "ConnectClient",
    "ConnectServer",
    "decode_end_stream",
    "encode_end_stream",
    "encode_envelope",
    "error_from_json",
    "error_to_json",
    "iter_envelopes",
    "make_wsgi_app",
    "serve_connect",
]
