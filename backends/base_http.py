"""HTTP chat backend base: one POST per turn, retried on transient failures."""
import json
import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence, Tuple

import httpx
from tenacity import (retry, retry_if_exception, stop_after_attempt,
                      wait_exponential)

from models.errors import UpstreamAIError
from models.schema import Message, RawTurn, ToolDescriptor

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = 429
TRANSIENT_ERRORS = (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError)


def is_retryable_http_error(exception: BaseException) -> bool:
    """True for server errors, rate limiting and transport failures; other 4xx are final."""
    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        return status >= 500 or status == RETRYABLE_STATUS
    return isinstance(exception, TRANSIENT_ERRORS)


class BaseHTTPBackend(ABC):
    """
    Abstract chat backend reached over HTTP.

    Subclasses translate between the gateway's messages and one provider's
    wire format (build_request / parse_response); this class owns the
    transport, the retry policy and the mapping of every failure that
    survives the retries to UpstreamAIError.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: int = 60,
        max_retries: int = 3,
        api_key: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
        system_prompt: Optional[str] = None,
    ):
        """
        Args:
            base_url: API root, e.g. "https://openrouter.ai/api/v1"; a
                trailing slash is dropped
            model: Model identifier sent with every request
            timeout: Per-request timeout in seconds
            max_retries: Total attempts for transient failures
            api_key: Credential; requests go unauthenticated when unset
            headers: Extra headers merged into every request
            system_prompt: System message used when the conversation has none
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.api_key = api_key
        self.default_headers = headers or {}
        self.system_prompt = system_prompt

    @abstractmethod
    def build_request(
        self, messages: Sequence[Message], tools: Sequence[ToolDescriptor]
    ) -> Tuple[str, dict[str, str], dict]:
        """Return (endpoint path, headers, JSON body) for one chat turn."""

    @abstractmethod
    def parse_response(self, response_json: dict) -> RawTurn:
        """Turn the provider's JSON reply into a RawTurn.

        May raise KeyError, IndexError, TypeError or ValueError on an
        unexpected shape; chat() reports those as UpstreamAIError.
        """

    async def chat(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDescriptor] = (),
    ) -> RawTurn:
        """
        Send the conversation to the backend and return its reply.

        Raises:
            UpstreamAIError: If the request fails after retries or the
                response cannot be parsed
        """
        endpoint, headers, body = self.build_request(messages, tools)
        url = self.base_url + endpoint

        logger.debug(
            f"Chat request to {url}: {len(messages)} messages, "
            f"{len(tools)} tools, {len(json.dumps(body))} bytes"
        )

        try:
            response_json = await self._post_with_retry(url, headers, body)
        except httpx.HTTPStatusError as e:
            raise UpstreamAIError(
                f"AI backend returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise UpstreamAIError(f"AI backend timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise UpstreamAIError(f"AI backend request failed: {e}") from e

        try:
            return self.parse_response(response_json)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise UpstreamAIError(f"Unexpected AI backend response: {e}") from e

    async def _post_with_retry(self, url: str, headers: dict[str, str], body: dict) -> dict:
        @retry(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception(is_retryable_http_error),
            reraise=True,
        )
        async def attempt() -> dict:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, headers=headers, json=body)
                if 400 <= response.status_code < 500:
                    logger.error(
                        f"AI backend rejected request with HTTP "
                        f"{response.status_code}: {response.text[:500]}"
                    )
                response.raise_for_status()
                return response.json()

        return await attempt()
