"""Runtime — bridges HTTP requests to the upstream completion API.

Builds the prompt for a validated request, calls upstream, and either
returns the reply text or yields SSE events for the streaming path.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from contextlib import aclosing

from app.prompts import build_document_prompt, build_stream_prompt
from app.schemas import GenerationRequest, StreamEvent
from app.upstream.client import UpstreamClient
from app.upstream.reassembler import reassemble

logger = logging.getLogger(__name__)


def format_sse(event: StreamEvent) -> str:
    """Serialize one event as an SSE ``data:`` frame."""
    data = json.dumps(event.model_dump(exclude_none=True), ensure_ascii=False)
    return f"data: {data}\n\n"


async def generate_document(client: UpstreamClient, request: GenerationRequest) -> str:
    """Run a single-shot completion and return the generated Markdown.

    Upstream errors propagate to the caller.
    """
    prompt = build_document_prompt(request)
    result = await client.complete(prompt, [], request.model_id)
    return result.content


async def stream_document(
    client: UpstreamClient,
    request: GenerationRequest,
) -> AsyncGenerator[StreamEvent, None]:
    """Stream generated text as start/chunk/end events.

    Any failure becomes one ``error`` event, after which nothing else is
    yielded.
    """
    prompt = build_stream_prompt(request)
    logger.info(f"Starting stream: model={request.model_id}, prompt_length={len(prompt)}")

    yield StreamEvent(type="start")

    sent = 0
    try:
        async with aclosing(client.complete_streaming(prompt, [], request.model_id)) as body:
            async for chunk in reassemble(body):
                # the reassembler marks [DONE] with an empty chunk
                if not chunk:
                    continue
                sent += len(chunk)
                yield StreamEvent(type="chunk", content=chunk)
    except Exception as e:
        logger.error(f"Stream failed after {sent} characters: {e}", exc_info=True)
        yield StreamEvent(type="error", message=str(e))
        return

    logger.info(f"Stream complete ({sent} characters)")
    yield StreamEvent(type="end")
