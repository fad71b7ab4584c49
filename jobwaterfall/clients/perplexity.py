"""
Generative text service client.

Thin asynchronous client for an OpenAI-compatible chat completions
endpoint (Perplexity). Returns the raw message text; decoding it into
records is the caller's job.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import aiohttp

from jobwaterfall.config import PerplexityConfig, ResilienceConfig
from jobwaterfall.utils.exceptions import TransientUpstreamError, classify_status

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    """Text returned by one completion request."""

    content: str
    model: str
    usage: dict[str, Any] = field(default_factory=dict)


class PerplexityClient:
    """
    Chat completions client.

    Example:
        >>> async with PerplexityClient() as client:
        ...     completion = await client.complete(
        ...         "Return only valid JSON.",
        ...         "List 5 sales jobs in Edmonton, AB as a JSON array.",
        ...     )
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize client.

        Args:
            api_key: Bearer token (defaults to PerplexityConfig.API_KEY)
            endpoint: Chat completions URL
            model: Default model name
            timeout: Request timeout in seconds
        """
        self.api_key = api_key or PerplexityConfig.API_KEY
        self.endpoint = endpoint or PerplexityConfig.ENDPOINT
        self.model = model or PerplexityConfig.MODEL
        self.timeout = timeout or ResilienceConfig.ATTEMPT_TIMEOUT_SECONDS
        self._session: Optional[aiohttp.ClientSession] = None
        self._stats = {"requests_made": 0, "errors": 0, "total_tokens": 0}

    async def __aenter__(self) -> "PerplexityClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def build_payload(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> dict[str, Any]:
        temperature = PerplexityConfig.TEMPERATURE if temperature is None else temperature
        return {
            "model": model or self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": max_tokens or PerplexityConfig.MAX_TOKENS,
            "temperature": max(0.0, min(2.0, temperature)),
        }

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> Completion:
        """
        Request one completion.

        Returns:
            Completion with the first choice's message text

        Raises:
            TransientUpstreamError: Network failure, 408/429/5xx, or a
                response without message content
            FatalUpstreamError: 401/403 and other 4xx
        """
        await self._ensure_session()
        payload = self.build_payload(system_prompt, user_prompt, max_tokens, temperature, model)
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        self._stats["requests_made"] += 1

        try:
            async with self._session.post(self.endpoint, headers=headers, json=payload) as response:
                if response.status >= 400:
                    body = await response.text()
                    retry_after = response.headers.get("Retry-After")
                    self._stats["errors"] += 1
                    raise classify_status(
                        response.status,
                        endpoint=self.endpoint,
                        response_body=body,
                        retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                    )
                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    self._stats["errors"] += 1
                    raise TransientUpstreamError(
                        "Completion body is not JSON",
                        endpoint=self.endpoint,
                        status_code=response.status,
                    ) from e

        except aiohttp.ClientError as e:
            self._stats["errors"] += 1
            raise TransientUpstreamError(f"HTTP client error: {e}", endpoint=self.endpoint) from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            self._stats["errors"] += 1
            raise TransientUpstreamError(
                "Invalid completion structure",
                endpoint=self.endpoint,
                response_body=str(data),
            ) from e

        usage = data.get("usage") or {}
        self._stats["total_tokens"] += int(usage.get("total_tokens") or 0)
        logger.info(
            "Completion received",
            extra={"model": payload["model"], "content_length": len(content or "")},
        )
        return Completion(content=content or "", model=payload["model"], usage=usage)

    def get_statistics(self) -> dict:
        return dict(self._stats)

    def __repr__(self) -> str:
        return f"PerplexityClient(model={self.model!r}, configured={bool(self.api_key)})"
