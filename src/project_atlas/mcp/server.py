"""JSON-RPC protocol server exposing the atlas tools over stdio."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager

import anyio
from anyio.abc import ObjectReceiveStream, ObjectSendStream
from mcp.types import (
    INVALID_PARAMS,
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    Implementation,
    InitializeResult,
    ServerCapabilities,
    TextContent,
    ToolsCapability,
)

from project_atlas.config import Config, get_config
from project_atlas.db.engine import init_db
from project_atlas.errors import AtlasError, ValidationError
from project_atlas.integrations.advisor import build_advisor
from project_atlas.mcp.framing import FrameDecoder, encode_frame
from project_atlas.mcp.tools import AppContext, call_tool, tool_catalog

logger = logging.getLogger(__name__)

SERVER_NAME = "project-atlas"
SERVER_VERSION = "0.1.0"
TOOL_ERROR = -32000
READ_CHUNK = 65536
MAX_PENDING_FRAMES = 64


class MethodNotFound(AtlasError):
    pass


@contextmanager
def app_lifespan(config: Config) -> Iterator[AppContext]:
    """Open the store once for the life of the process."""
    db = init_db(config.db_path)
    try:
        yield AppContext(db=db, config=config, advisor=build_advisor(config))
    finally:
        db.close()


def _ok(request_id, result) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _error(request_id, code: int, message: str, data: dict | None = None) -> dict:
    error = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


class AtlasServer:
    """Reads framed requests, runs each in its own task, writes framed replies.

    Requests are not awaited before the next frame is read, so replies can
    leave in a different order than requests arrived; each carries the id of
    its request. All frames go through a single writer task.
    """

    def __init__(self, app: AppContext):
        self.app = app

    async def serve(
        self,
        receive: Callable[[], Awaitable[bytes]],
        send: Callable[[bytes], Awaitable[None]],
    ) -> None:
        """Run until ``receive`` returns an empty chunk and pending replies are out."""
        decoder = FrameDecoder()
        outbox_send, outbox_receive = anyio.create_memory_object_stream(MAX_PENDING_FRAMES)

        async with anyio.create_task_group() as tg:
            tg.start_soon(self._write_frames, outbox_receive, send)
            async with outbox_send:
                async with anyio.create_task_group() as handlers:
                    while chunk := await receive():
                        for message in decoder.feed(chunk):
                            handlers.start_soon(self._respond, message, outbox_send)

        if decoder.buffered:
            logger.warning("Input closed with %d bytes of an incomplete frame", decoder.buffered)

    async def _respond(self, message: dict, outbox: ObjectSendStream) -> None:
        response = await self.handle_message(message)
        if response is not None:
            await outbox.send(encode_frame(response))

    async def _write_frames(
        self,
        outbox: ObjectReceiveStream,
        send: Callable[[bytes], Awaitable[None]],
    ) -> None:
        async with outbox:
            async for frame in outbox:
                await send(frame)

    async def handle_message(self, message: dict) -> dict | None:
        """Answer one request. Messages without an id never get a reply."""
        method = message.get("method")
        request_id = message.get("id")
        if request_id is None or method == "notifications/initialized":
            logger.debug("Notification %s", method)
            return None

        try:
            result = await self._dispatch(method, message.get("params"))
        except MethodNotFound as e:
            return _error(request_id, METHOD_NOT_FOUND, str(e))
        except ValidationError as e:
            return _error(request_id, INVALID_PARAMS, str(e))
        except AtlasError as e:
            logger.warning("Request %s (%s) failed: %s", request_id, method, e)
            return _error(request_id, TOOL_ERROR, str(e), {"type": type(e).__name__})
        except Exception as e:
            logger.exception("Request %s (%s) raised", request_id, method)
            return _error(
                request_id, TOOL_ERROR, str(e) or "Unexpected error", {"type": type(e).__name__}
            )
        return _ok(request_id, result)

    async def _dispatch(self, method: str | None, params: object) -> dict:
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise ValidationError("params must be an object")

        if method == "initialize":
            return InitializeResult(
                protocolVersion=LATEST_PROTOCOL_VERSION,
                capabilities=ServerCapabilities(tools=ToolsCapability()),
                serverInfo=Implementation(name=SERVER_NAME, version=SERVER_VERSION),
            ).model_dump(mode="json", by_alias=True, exclude_none=True)

        if method == "tools/list":
            return {
                "tools": [
                    t.model_dump(mode="json", by_alias=True, exclude_none=True)
                    for t in tool_catalog()
                ]
            }

        if method == "tools/call":
            name = params.get("name")
            if not isinstance(name, str):
                raise ValidationError("tools/call needs a tool name")
            result = await call_tool(self.app, name, params.get("arguments"))
            text = TextContent(type="text", text=json.dumps(result, default=str))
            return {
                "content": [text.model_dump(mode="json", exclude_none=True)],
                "structuredContent": result,
            }

        if method == "ping":
            return {"pong": True}

        raise MethodNotFound(f"Unknown method: {method}")


async def run_stdio(app: AppContext) -> None:
    stdin = anyio.wrap_file(sys.stdin.buffer)
    stdout = anyio.wrap_file(sys.stdout.buffer)

    async def receive() -> bytes:
        return await stdin.read1(READ_CHUNK)

    async def send(frame: bytes) -> None:
        await stdout.write(frame)
        await stdout.flush()

    await AtlasServer(app).serve(receive, send)


def configure_logging(config: Config) -> None:
    """Log to stderr; stdout carries protocol frames."""
    logging.basicConfig(
        stream=sys.stderr,
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> None:
    config = get_config()
    configure_logging(config)
    with app_lifespan(config) as app:
        logger.info("Serving %d tools on stdio", len(tool_catalog()))
        anyio.run(run_stdio, app)


if __name__ == "__main__":
    main()
