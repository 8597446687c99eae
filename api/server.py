"""
FastAPI exporter serving the published snapshot in Prometheus text format.

Every request, whatever its method, path or headers, gets the same answer:
the static family declarations, the latest snapshot and the liveness
lines. The handler never awaits, so the single event loop serves one
request at a time.
"""

import asyncio
import logging
import socket

try:
    from fastapi import FastAPI
    from fastapi.responses import Response
    import uvicorn
except ImportError:
    raise ImportError("FastAPI not installed. Install via: pip install fastapi uvicorn")

from publish.exposition import CONTENT_TYPE, render_body
from publish.snapshot import SnapshotWriter

logger = logging.getLogger(__name__)

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]

RESPONSE_HEADERS = {
    "Connection": "close",
    "Access-Control-Allow-Origin": "*",
}


class TransportBindError(RuntimeError):
    """The exporter could not bind its listening address."""


def create_app(snapshot_path: str) -> FastAPI:
    """Create the exporter app for the snapshot at `snapshot_path`"""

    snapshot = SnapshotWriter(snapshot_path)
    app = FastAPI(
        title="Simon Metrics Exporter",
        version="1.0.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    async def metrics(full_path: str = ""):
        text = snapshot.read()
        if text is None:
            logger.debug(f"No snapshot at {snapshot.path}, reporting exporter down")
        return Response(
            content=render_body(text),
            media_type=CONTENT_TYPE,
            headers=RESPONSE_HEADERS,
        )

    app.add_api_route("/", metrics, methods=ALL_METHODS, include_in_schema=False)
    app.add_api_route("/{full_path:path}", metrics, methods=ALL_METHODS, include_in_schema=False)
    return app


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind the listening socket up front so a busy port fails at startup."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise TransportBindError(f"Cannot bind {host}:{port}: {e}") from e
    sock.set_inheritable(True)
    return sock


class APIServer:
    """uvicorn server for the exporter app"""

    def __init__(self, app: FastAPI, host: str = "0.0.0.0", port: int = 9184):
        self.app = app
        self.host = host
        self.port = port
        self.server = None
        self.sock = None
        self.running = False

    def bind(self):
        self.sock = bind_socket(self.host, self.port)
        return self.sock

    async def start(self):
        """Start API server"""
        if self.sock is None:
            self.bind()

        logger.info(f"Starting exporter on {self.host}:{self.port}")
        self.running = True

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
            lifespan="off",
            workers=1,
        )
        self.server = uvicorn.Server(config)

        try:
            await self.server.serve(sockets=[self.sock])
        except asyncio.CancelledError:
            logger.info("Exporter cancelled")
        finally:
            self.running = False
            self.sock.close()
            self.sock = None

    async def stop(self):
        """Stop API server"""
        self.running = False
        if self.server:
            self.server.should_exit = True


def create_api_server(snapshot_path: str, host: str = "0.0.0.0", port: int = 9184) -> APIServer:
    """Create and configure the exporter server"""
    return APIServer(create_app(snapshot_path), host, port)
