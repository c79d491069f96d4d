import httpx
import logging
from .config import (
    PERPLEXITY_API_KEY,
    COMPLETION_BASE_URL,
    COMPLETION_MODEL,
    HTTP_TIMEOUT,
    ConfigurationError,
)

logger = logging.getLogger(__name__)


class CompletionError(RuntimeError):
    """The completion service could not be reached or returned a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _resolve_api_key(api_key: str | None) -> str:
    key = PERPLEXITY_API_KEY if api_key is None else api_key
    if not key:
        raise ConfigurationError("PERPLEXITY_API_KEY is not set")
    return key


def _build_payload(model: str, system_prompt: str, user_prompt: str,
                   temperature: float | None = None, max_tokens: int | None = None) -> dict:
    payload = {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
    }
    if temperature is not None:
        payload["temperature"] = temperature
    if max_tokens is not None:
        payload["max_tokens"] = max_tokens
    return payload


def _extract_content(resp: httpx.Response) -> str:
    """Return choices[0].message.content, or '' when the body has no such field."""
    if resp.is_error:
        raise CompletionError(
            f"Completion service returned {resp.status_code}: {resp.text[:200]}",
            status_code=resp.status_code,
        )
    try:
        data = resp.json()
    except ValueError as e:
        raise CompletionError(f"Completion service returned invalid JSON: {e}") from e

    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        logger.warning("Completion response had no message content")
        return ""
    return content or ""


class CompletionClient:
    """
    Client for an OpenAI-compatible chat completions endpoint.

    One attempt per call; there is no retry. Missing credentials raise
    ConfigurationError at construction so nothing else runs.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = COMPLETION_BASE_URL,
        model: str = COMPLETION_MODEL,
        timeout: float = HTTP_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.model = model
        self.client = httpx.Client(
            base_url=base_url.rstrip('/'),
            headers={"Authorization": f"Bearer {_resolve_api_key(api_key)}"},
            timeout=timeout,
            transport=transport,
        )

    def complete(self, system_prompt: str, user_prompt: str, model: str | None = None) -> str:
        model = model or self.model
        logger.debug(f"Requesting completion from {model} ({len(user_prompt)} prompt chars)")
        try:
            resp = self.client.post(
                "/chat/completions",
                json=_build_payload(model, system_prompt, user_prompt),
            )
        except httpx.HTTPError as e:
            raise CompletionError(f"Completion request failed: {e}") from e

        content = _extract_content(resp)
        logger.info(f"Completion received from {model} ({len(content)} chars)")
        return content

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class AsyncCompletionClient:
    """Async variant used by metadata enrichment. Use as an async context manager."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = COMPLETION_BASE_URL,
        model: str = COMPLETION_MODEL,
        timeout: float = HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.model = model
        self._api_key = _resolve_api_key(api_key)
        self._base_url = base_url.rstrip('/')
        self._timeout = timeout
        self._transport = transport
        self.client = None

    async def __aenter__(self):
        self.client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=self._timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.client:
            await self.client.aclose()
            self.client = None
        return False

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        if not self.client:
            raise RuntimeError("AsyncCompletionClient must be used as an async context manager")

        model = model or self.model
        try:
            resp = await self.client.post(
                "/chat/completions",
                json=_build_payload(model, system_prompt, user_prompt, temperature, max_tokens),
            )
        except httpx.HTTPError as e:
            raise CompletionError(f"Completion request failed: {e}") from e
        return _extract_content(resp)
