"""Incremental reader for the oracle event stream.

Wire format: blocks separated by a blank line, each holding an ``event:`` line and
one or more ``data:`` lines with a JSON payload. Lines starting with ``:`` are
comments. Network chunks may split a block (or a multi-byte character) anywhere,
so the reader keeps the unterminated tail in a buffer between reads.
"""

import codecs
import json
from typing import AsyncIterable, AsyncIterator, Optional

import structlog
from pydantic import TypeAdapter, ValidationError

from concept_alignment.models import StreamEvent, StreamEventType
from concept_alignment.models.streaming import TERMINAL_EVENTS
from concept_alignment.pipeline.errors import StreamProtocolError

logger = structlog.get_logger(__name__)

_EVENT_ADAPTER: TypeAdapter = TypeAdapter(StreamEvent)
_KNOWN_EVENTS = frozenset(t.value for t in StreamEventType)


class EventStreamReader:
    """Turns raw stream chunks into typed events.

    Malformed blocks are quarantined (kept in ``quarantined`` and logged) rather
    than raised, so one bad block never ends the stream.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.quarantined: list[StreamProtocolError] = []

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        """Consume one network chunk and return every event completed by it."""
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        if not text:
            return []

        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        *blocks, self._buffer = self._buffer.split("\n\n")
        return self._parse_blocks(blocks)

    def flush(self) -> list[StreamEvent]:
        """Parse whatever is left once the stream has ended.

        An unparseable remainder is dropped silently.
        """
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        if not remainder.strip():
            return []

        try:
            event = parse_block(remainder)
        except StreamProtocolError as e:
            logger.debug("stream_remainder_dropped", error=str(e), size=len(remainder))
            return []
        return [event] if event is not None else []

    def _parse_blocks(self, blocks: list[str]) -> list[StreamEvent]:
        events = []
        for block in blocks:
            if not block.strip():
                continue
            try:
                event = parse_block(block)
            except StreamProtocolError as e:
                self.quarantined.append(e)
                logger.warning("stream_block_skipped", error=str(e), preview=block[:200])
                continue
            if event is not None:
                events.append(event)
        return events


def parse_block(block: str) -> Optional[StreamEvent]:
    """Parse one complete block into a typed event.

    Returns:
        The event, or None for blocks that carry nothing actionable (comments
        only, unknown event names, missing event name).

    Raises:
        StreamProtocolError: If the data line is not valid JSON or does not fit
            the schema of its event.
    """
    event_name = ""
    data_lines: list[str] = []

    for raw_line in block.split("\n"):
        line = raw_line.strip()
        if not line or line.startswith(":"):
            continue
        if line.startswith("event:"):
            event_name = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:"):].strip())

    if not event_name or event_name not in _KNOWN_EVENTS:
        if event_name:
            logger.debug("stream_unknown_event_ignored", event_name=event_name)
        return None

    payload: object = {}
    if data_lines:
        data_str = "\n".join(data_lines)
        try:
            payload = json.loads(data_str)
        except json.JSONDecodeError as e:
            raise StreamProtocolError(f"Invalid JSON in '{event_name}' event: {e}") from e
    elif event_name != "done":
        raise StreamProtocolError(f"Event '{event_name}' has no data line")

    try:
        return _EVENT_ADAPTER.validate_python(_shape_event(event_name, payload))
    except ValidationError as e:
        raise StreamProtocolError(f"Malformed '{event_name}' payload: {e}") from e


def _shape_event(event_name: str, payload: object) -> dict:
    """Map a raw payload onto the field layout of its typed event."""
    if event_name == "error":
        if isinstance(payload, dict):
            message = payload.get("message") or payload.get("error") or json.dumps(payload)
        else:
            message = str(payload)
        return {"event": "error", "message": message}

    if event_name == "progress":
        if not isinstance(payload, dict):
            return {"event": "progress", "message": str(payload)}
        percent = payload.get("progress", payload.get("percent", 0))
        try:
            percent = max(0, min(100, int(percent)))
        except (TypeError, ValueError):
            percent = 0
        return {
            "event": "progress",
            "message": str(payload.get("message", "")),
            "percent": percent,
            "data": payload,
        }

    if event_name == "done" and not isinstance(payload, dict):
        payload = {}

    # result / concept / cell must carry an object; a non-dict fails validation
    return {"event": event_name, "data": payload}


async def iter_stream_events(
    chunks: AsyncIterable[bytes | str],
    reader: Optional[EventStreamReader] = None,
) -> AsyncIterator[StreamEvent]:
    """Yield typed events from an async chunk source until a terminal event.

    Iteration stops after ``done`` or ``error``; if the source ends first, the
    buffered remainder is flushed.
    """
    reader = reader or EventStreamReader()

    async for chunk in chunks:
        for event in reader.feed(chunk):
            yield event
            if event.event in TERMINAL_EVENTS:
                return

    for event in reader.flush():
        yield event
        if event.event in TERMINAL_EVENTS:
            return
