from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class SSEEvent:
    data: str
    event: str | None = None

    @property
    def is_done(self) -> bool:
        return self.data.strip() == DONE_SENTINEL


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[SSEEvent]:
    """Group raw server-sent-event lines into events.

    An event ends at a blank line. Multiple ``data:`` lines are joined with
    newlines, ``:`` comment lines and unknown fields are ignored. A trailing
    event without a closing blank line is still emitted.
    """
    event_name: str | None = None
    data_lines: list[str] = []

    async for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data_lines:
                yield SSEEvent(data="\n".join(data_lines), event=event_name)
            event_name = None
            data_lines = []
            continue
        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            data_lines.append(value)
        elif field == "event":
            event_name = value
        else:
            logger.debug("Ignoring SSE field %r", field)

    if data_lines:
        yield SSEEvent(data="\n".join(data_lines), event=event_name)
