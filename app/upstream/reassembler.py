"""Stream reassembler — turns raw upstream body reads into output chunks.

The upstream stream is line-delimited ``data: {json}`` events ending with
``data: [DONE]``. Reads arrive at arbitrary byte boundaries, so lines are
rebuilt from a pending buffer before decoding. Deltas are then collected
until there is enough text, or the text ends on a natural break, and
yielded as one chunk.

Two end conditions:

* ``[DONE]`` — flush what is buffered, then yield ``""`` as a terminating
  marker and stop reading.
* source exhausted — flush what is buffered and stop, with no marker.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)

FLUSH_THRESHOLD = 50
SEMANTIC_BREAK_CHARS = frozenset(
    [" ", ",", ".", "!", "?", "，", "。", "！", "？", "、", "；", "：", "\n", "\r"]
)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


def extract_delta(line: str) -> str | None:
    """Return ``choices[0].delta.content`` of one event line, or None."""
    try:
        event = json.loads(line)
    except ValueError:
        logger.warning(f"Skipping unparseable stream line: {line[:200]!r}")
        return None
    try:
        content = event["choices"][0]["delta"]["content"]
    except (KeyError, IndexError, TypeError):
        logger.debug(f"Stream event without delta content: {line[:200]!r}")
        return None
    return content if isinstance(content, str) else None


def should_flush(buffer: str, threshold: int = FLUSH_THRESHOLD) -> bool:
    """Enough text accumulated, or it ends on a semantic break."""
    if len(buffer) >= threshold:
        return True
    return bool(buffer) and buffer[-1] in SEMANTIC_BREAK_CHARS


async def reassemble(
    byte_chunks: AsyncIterable[bytes],
    threshold: int = FLUSH_THRESHOLD,
) -> AsyncIterator[str]:
    """Yield output chunks rebuilt from an upstream byte stream.

    Errors raised by ``byte_chunks`` propagate unchanged; text that was
    buffered but not yet yielded is dropped.
    """
    pending = b""
    content = ""

    try:
        async for raw in byte_chunks:
            pending += raw
            *lines, pending = pending.split(b"\n")

            for raw_line in lines:
                line = raw_line.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                if line.startswith(DATA_PREFIX):
                    line = line[len(DATA_PREFIX):].strip()

                if line == DONE_SENTINEL:
                    if content:
                        yield content
                    yield ""
                    return

                delta = extract_delta(line)
                if delta is None:
                    continue

                content += delta
                if should_flush(content, threshold):
                    yield content
                    content = ""
    except Exception:
        if content:
            logger.warning(f"Stream aborted, discarding {len(content)} unflushed characters")
        raise

    if pending.strip():
        logger.debug(f"Stream closed with an incomplete line: {pending[:200]!r}")
    if content:
        yield content
