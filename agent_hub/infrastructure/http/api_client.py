"""
HTTP client for the remote chat service.

Transient transport failures are retried with exponential backoff; HTTP error
statuses are never retried and surface as typed errors, with 429 reported
separately so callers can honour the Retry-After hint.
"""

from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Type, TypeVar, Union
import asyncio
import time

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from agent_hub.errors import (
    HttpError, NetworkTransientError, RateLimitedError, RemoteChatError, RequestError
)
from agent_hub.infrastructure.http.schema import (
    AgentCatalog, BatchRequest, BatchResult, ChatResult, HealthStatus, LoginResult,
    chat_result_adapter
)
from agent_hub.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "http://localhost:8080/api"
DEFAULT_RETRY_AFTER = 60

ModelT = TypeVar("ModelT", bound=BaseModel)


class APIClient:
    """Stateless transport shared by every agent"""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        token: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        self.base_url = base_url.rstrip("/")
        self.headers: Dict[str, str] = {
            "Content-Type": "application/json",
            **(headers or {})
        }
        self.token: Optional[str] = None
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._sleep = sleep
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)

        if token:
            self.set_auth_token(token)

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "APIClient":
        """Build a client from a Settings instance"""
        return cls(
            settings.api_base_url,
            token=settings.api_token,
            timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_base_delay=settings.retry_base_delay,
            **kwargs
        )

    def set_auth_token(self, token: Optional[str]):
        """Attach a bearer token to every later request; None removes the header"""
        self.token = token
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        else:
            self.headers.pop("Authorization", None)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after the zero-based ``attempt`` failed"""
        return self.retry_base_delay * (2 ** attempt)

    async def request(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Issue a request and return the decoded JSON object"""

        url = f"{self.base_url}{endpoint}"
        request_headers = {**self.headers, **(headers or {})}
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            started = time.perf_counter()
            try:
                response = await self._client.request(method, url, json=json, headers=request_headers)
            except httpx.TransportError as e:
                last_error = e
                agent_logger.log_request(
                    method, endpoint,
                    attempt=attempt + 1,
                    success=False,
                    error=f"{type(e).__name__}: {e}"
                )
                metrics.increment_counter("http.transient_failures")

                if attempt < self.max_retries - 1:
                    delay = self.backoff_delay(attempt)
                    logger.info("Retrying after network error", endpoint=endpoint, delay=delay, attempt=attempt + 1)
                    await self._sleep(delay)
                continue

            duration_ms = (time.perf_counter() - started) * 1000
            metrics.record_latency("http_request", duration_ms)
            agent_logger.log_request(
                method, endpoint,
                status_code=response.status_code,
                duration_ms=duration_ms,
                attempt=attempt + 1,
                success=response.is_success
            )
            return self._handle_response(response)

        raise NetworkTransientError(
            f"Network error after {self.max_retries} attempts: {last_error}",
            attempts=self.max_retries
        ) from last_error

    def _handle_response(self, response: httpx.Response) -> Dict[str, Any]:
        """Map a response onto a JSON object or a typed failure"""

        if response.status_code == 429:
            raise RateLimitedError(_parse_retry_after(response.headers.get("Retry-After")))

        if not response.is_success:
            message = None
            try:
                body = response.json()
                if isinstance(body, dict):
                    message = body.get("error")
            except ValueError:
                pass
            raise HttpError(response.status_code, message or f"HTTP {response.status_code}")

        if not response.content:
            return {}

        try:
            body = response.json()
        except ValueError:
            raise HttpError(response.status_code, "Invalid JSON in response body") from None

        if not isinstance(body, dict):
            raise HttpError(response.status_code, "Expected a JSON object in response body")
        return body

    async def _get_model(self, model: Type[ModelT], endpoint: str, **kwargs) -> ModelT:
        data = await self.request(endpoint, **kwargs)
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise RequestError(f"Malformed response from {endpoint}: {e.error_count()} validation errors") from e

    async def health_check(self) -> HealthStatus:
        return await self._get_model(HealthStatus, "/health")

    async def list_agents(self) -> AgentCatalog:
        return await self._get_model(AgentCatalog, "/agents")

    async def send_chat(
        self,
        messages: List[Dict[str, str]],
        *,
        agent_id: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ChatResult:
        """POST /chat and decode the success/failure variant"""

        body: Dict[str, Any] = {"messages": messages}
        options = {
            "agentId": agent_id,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        body.update({k: v for k, v in options.items() if v is not None})

        data = await self.request("/chat", method="POST", json=body)
        try:
            return chat_result_adapter.validate_python(data)
        except ValidationError as e:
            raise RemoteChatError("Malformed chat response") from e

    async def login(self, username: str, password: str) -> LoginResult:
        """Authenticate and keep the returned token on success"""

        result = await self._get_model(
            LoginResult, "/auth/login",
            method="POST",
            json={"username": username, "password": password}
        )
        if result.success and result.token:
            self.set_auth_token(result.token)
        return result

    async def batch_request(self, requests: Iterable[Union[BatchRequest, Dict[str, Any]]]) -> List[BatchResult]:
        """Run requests one after another, capturing each outcome"""

        results = []
        for item in requests:
            req = item if isinstance(item, BatchRequest) else BatchRequest.model_validate(item)
            try:
                data = await self.request(req.endpoint, method=req.method, json=req.json_body)
                results.append(BatchResult(success=True, data=data))
            except RequestError as e:
                results.append(BatchResult(success=False, error=str(e)))
        return results

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self) -> "APIClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()


def _parse_retry_after(value: Optional[str]) -> int:
    if not value:
        return DEFAULT_RETRY_AFTER
    try:
        return max(int(float(value)), 0)
    except (ValueError, OverflowError):
        return DEFAULT_RETRY_AFTER
