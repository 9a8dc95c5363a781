"""Content-Length framing for JSON-RPC messages over a byte stream.

Each frame is a header block terminated by a blank line, carrying at least
``Content-Length: <n>``, followed by exactly ``n`` bytes of UTF-8 JSON.
"""

import json
import logging

from project_atlas.errors import FramingError

logger = logging.getLogger(__name__)

HEADER_END = b"\r\n\r\n"
LENGTH_HEADER = b"content-length:"


def encode_frame(payload: dict) -> bytes:
    body = json.dumps(payload, default=str).encode("utf-8")
    return f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body


def parse_content_length(header: bytes) -> int:
    """Read the Content-Length out of a header block. Other headers are ignored."""
    for line in header.decode("latin-1").split("\r\n"):
        name, sep, value = line.partition(":")
        if not sep or name.strip().lower() != "content-length":
            continue
        try:
            length = int(value.strip())
        except ValueError as e:
            raise FramingError(f"Unparseable Content-Length: {value.strip()!r}") from e
        if length < 0:
            raise FramingError(f"Negative Content-Length: {length}")
        return length
    raise FramingError("Header block has no Content-Length")


class FrameDecoder:
    """Incremental decoder that survives arbitrary chunk boundaries.

    ``feed`` never waits for more data than it has: it returns every complete
    message currently buffered and keeps the remainder for the next chunk.
    A frame with a bad header is dropped along with everything up to the
    next ``Content-Length:`` header, since its body length is unknown.
    """

    def __init__(self):
        self._buffer = bytearray()
        self._pending_length: int | None = None
        self._resyncing = False

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[dict]:
        self._buffer.extend(chunk)
        messages = []
        while True:
            if self._resyncing:
                if not self._skip_to_next_header():
                    break
                self._resyncing = False

            if self._pending_length is None:
                header_end = self._buffer.find(HEADER_END)
                if header_end == -1:
                    break
                header = bytes(self._buffer[:header_end])
                del self._buffer[: header_end + len(HEADER_END)]
                try:
                    self._pending_length = parse_content_length(header)
                except FramingError as e:
                    logger.warning("Dropping frame: %s", e)
                    self._resyncing = True
                    continue

            if len(self._buffer) < self._pending_length:
                break

            body = bytes(self._buffer[: self._pending_length])
            del self._buffer[: self._pending_length]
            self._pending_length = None

            message = self._decode_body(body)
            if message is not None:
                messages.append(message)
        return messages

    def _skip_to_next_header(self) -> bool:
        """Discard bytes before the next Content-Length header.

        Returns False when none is buffered yet; a short tail is kept in case
        the header is split across chunks.
        """
        start = bytes(self._buffer).lower().find(LENGTH_HEADER)
        if start == -1:
            keep = len(LENGTH_HEADER) - 1
            del self._buffer[: max(0, len(self._buffer) - keep)]
            return False
        del self._buffer[:start]
        return True

    def _decode_body(self, body: bytes) -> dict | None:
        try:
            message = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            logger.warning("Dropping frame with a malformed JSON body (%d bytes)", len(body))
            return None
        if not isinstance(message, dict):
            logger.warning("Dropping frame whose body is not a JSON object")
            return None
        return message
