"""
Async client for the routing oracle.

The oracle is any OpenAI-compatible /chat/completions endpoint reached with
plain httpx; no provider SDK is involved. It is consulted once per routing
decision. Every failure (missing key, timeout, transport error, non-2xx,
empty answer) surfaces as OracleError so the router can fall back.

Environment configuration (read into Settings):
- LLM_API_BASE: Base URL for API (default: https://api.openai.com/v1)
- LLM_API_KEY / OPENAI_API_KEY: API key / bearer token
- LLM_ROUTING_MODEL: Model name (default: gpt-3.5-turbo)
- LLM_ROUTING_TIMEOUT_SECONDS: Request timeout in seconds (default: 10)
"""
import asyncio
import time
from typing import Any, Dict, List, Optional

import httpx

from app.core.errors import OracleError
from app.core.logging import get_logger
from app.core.metrics import record_oracle_error, record_oracle_request

logger = get_logger(__name__)

ROUTING_TEMPERATURE = 0.3
ROUTING_MAX_TOKENS = 200


class OracleClient:
    """Async HTTP client for routing completions."""

    def __init__(
        self,
        api_base: str,
        api_key: Optional[str],
        model: str,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def _post(self, path: str, json_payload: Dict[str, Any]) -> httpx.Response:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        url = f"{self.api_base}{path}"
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            return await asyncio.wait_for(
                client.post(url, headers=headers, json=json_payload),
                timeout=self.timeout_seconds,
            )

    def _fail(self, reason: str, message: str, **fields: Any) -> OracleError:
        record_oracle_error(reason)
        logger.warning("oracle_request_failed", reason=reason, model=self.model, error=message, **fields)
        return OracleError(message, reason=reason)

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """
        Ask the oracle and return the raw text of its first choice.

        Raises:
            OracleError: The oracle is not configured or did not answer usably
        """
        if not self.api_key:
            raise self._fail("missing_api_key", "LLM API key not configured")

        messages: List[Dict[str, str]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": ROUTING_TEMPERATURE,
            "max_tokens": ROUTING_MAX_TOKENS,
        }

        start = time.time()
        try:
            response = await self._post("/chat/completions", json_payload=payload)
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            raise self._fail("timeout", str(exc) or "Oracle request timed out", error_type=type(exc).__name__) from exc
        except httpx.HTTPError as exc:
            raise self._fail("http_error", str(exc), error_type=type(exc).__name__) from exc
        finally:
            # Latency is recorded for failed calls too
            record_oracle_request(self.model, time.time() - start)

        if response.status_code >= 400:
            raise self._fail(
                "bad_status",
                f"Oracle API error: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise self._fail("malformed_response", f"Unexpected oracle response shape: {exc}") from exc

        if not isinstance(content, str) or not content.strip():
            raise self._fail("empty_response", "No response from oracle")

        logger.debug("oracle_response_received", model=self.model, length=len(content))
        return content.strip()
