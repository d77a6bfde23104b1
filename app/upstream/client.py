"""Upstream client — OpenAI-compatible chat completions over httpx.

One POST per call. ``complete`` waits for the whole JSON body;
``complete_streaming`` yields the raw response body as it arrives so the
reassembler can re-chunk it.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx
import pydantic

from app.config import UpstreamConfig
from app.errors import UpstreamAPIError, UpstreamMalformedResponse, UpstreamTransportError
from app.schemas import CompletionResult, UpstreamMessage

logger = logging.getLogger(__name__)

_CONNECT_TIMEOUT = 10.0


def build_messages(prompt: str, history: Sequence[UpstreamMessage] | None = None) -> list[dict[str, str]]:
    """Copy the history and append the prompt as the final user message."""
    messages = [m.model_dump() for m in history or []]
    messages.append({"role": "user", "content": prompt})
    return messages


def _extract_message_content(result: Any) -> str | None:
    try:
        content = result["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    return content if isinstance(content, str) else None


def _api_error(response: httpx.Response) -> UpstreamAPIError:
    """Build an UpstreamAPIError from a non-2xx response that has been read."""
    message = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            message = error["message"]
    if message is None:
        message = f"HTTP {response.status_code} {response.reason_phrase}".strip()

    logger.error(
        f"Upstream returned {response.status_code}: {message} "
        f"(body={response.text[:500]!r})"
    )
    return UpstreamAPIError(message, response.status_code)


class UpstreamClient:
    """Talks to the single configured completion endpoint.

    ``transport`` is handed to ``httpx.AsyncClient`` unchanged; tests pass an
    ``httpx.MockTransport`` here.
    """

    def __init__(self, config: UpstreamConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(self.config.timeout, connect=_CONNECT_TIMEOUT)
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    def _payload(
        self,
        prompt: str,
        history: Sequence[UpstreamMessage] | None,
        model_id: str | None,
        temperature: float,
        top_p: float,
        stream: bool,
    ) -> dict[str, Any]:
        return {
            "model": model_id or self.config.default_model,
            "messages": build_messages(prompt, history),
            "temperature": temperature,
            "top_p": top_p,
            "stream": stream,
        }

    async def complete(
        self,
        prompt: str,
        history: Sequence[UpstreamMessage] | None = None,
        model_id: str | None = None,
        temperature: float = 0.7,
        top_p: float = 0.8,
    ) -> CompletionResult:
        """Run a non-streaming completion and return the reply text.

        Raises:
            UpstreamAPIError: non-2xx status.
            UpstreamMalformedResponse: 2xx without ``choices[0].message.content``.
            UpstreamTransportError: the connection failed or timed out.
        """
        payload = self._payload(prompt, history, model_id, temperature, top_p, stream=False)
        logger.info(f"Upstream completion: model={payload['model']}, messages={len(payload['messages'])}")

        try:
            async with self._client() as client:
                response = await client.post(self.config.base_url, headers=self._headers(), json=payload)
        except httpx.TransportError as e:
            logger.error(f"Upstream connection failed: {e!r}", exc_info=True)
            raise UpstreamTransportError(f"Upstream connection failed: {type(e).__name__}: {e}") from e

        if not response.is_success:
            raise _api_error(response)

        try:
            result = response.json()
        except ValueError as e:
            logger.error(f"Upstream returned non-JSON body: {response.text[:500]!r}")
            raise UpstreamMalformedResponse("Upstream response is not valid JSON") from e

        content = _extract_message_content(result)
        if content is None:
            logger.error(f"Upstream response has no message content: {str(result)[:1000]}")
            raise UpstreamMalformedResponse("Could not get the model reply content")

        try:
            completion = CompletionResult(
                content=content,
                model=result.get("model"),
                usage=result.get("usage"),
                raw=result,
            )
        except pydantic.ValidationError as e:
            logger.error(f"Upstream response has unexpected metadata: {e}")
            raise UpstreamMalformedResponse("Upstream response metadata is malformed") from e

        logger.info(f"Upstream reply received (content_length={len(content)})")
        return completion

    async def complete_streaming(
        self,
        prompt: str,
        history: Sequence[UpstreamMessage] | None = None,
        model_id: str | None = None,
        temperature: float = 0.7,
        top_p: float = 0.8,
    ) -> AsyncIterator[bytes]:
        """Open a streaming completion and yield raw body reads.

        The status is checked before the first byte is yielded. Each read is
        passed on as soon as it arrives and carries no line alignment.
        """
        payload = self._payload(prompt, history, model_id, temperature, top_p, stream=True)
        logger.info(f"Upstream stream: model={payload['model']}, messages={len(payload['messages'])}")

        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", self.config.base_url, headers=self._headers(), json=payload
                ) as response:
                    if not response.is_success:
                        await response.aread()
                        raise _api_error(response)
                    async for chunk in response.aiter_bytes():
                        yield chunk
        except httpx.TransportError as e:
            logger.error(f"Upstream stream failed: {e!r}", exc_info=True)
            raise UpstreamTransportError(f"Upstream connection failed: {type(e).__name__}: {e}") from e
