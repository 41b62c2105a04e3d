"""
Generation Gateway for the TenderMatch backend

Sole chokepoint for calls to the external text-generation service: every call
is estimated, admitted against the shared token window, bounded by a timeout
and retried with exponential backoff when the provider throttles.
"""

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol

from error_handler import (
    RateLimitedError,
    TenderMatchError,
    UpstreamError,
    error_handler,
)
from limiter import TokenWindowLimiter
from shared_utils import (
    ANTHROPIC_API_KEY,
    ANTHROPIC_MODEL,
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    GENERATION_TIMEOUT_SECONDS,
    MAX_IN_FLIGHT_GENERATIONS,
    MIN_CALL_INTERVAL_SECONDS,
    RATE_LIMIT_BACKOFF_SECONDS,
    RATE_LIMIT_MAX_RETRIES,
    TOKENS_PER_MINUTE,
)
from token_manager import TokenManager

logger = logging.getLogger(__name__)

_RATE_LIMIT_MESSAGE = re.compile(r"rate[ _-]?limit", re.IGNORECASE)


@dataclass(frozen=True)
class ProviderResponse:
    text: str
    model: str
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


@dataclass(frozen=True)
class GeneratedText:
    text: str
    model: str
    request_id: str
    attempts: int
    estimated_tokens: int
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


class GenerationProvider(Protocol):
    """The one request/response contract the gateway depends on"""

    async def complete(self, system_prompt: str, content: str,
                       max_tokens: int, temperature: float) -> ProviderResponse:
        ...


def is_rate_limit_error(error: Exception) -> bool:
    """Provider throttling, recognised by status code, error-type marker or message"""
    if getattr(error, "status_code", None) == 429 or getattr(error, "code", None) == 429:
        return True
    body = getattr(error, "body", None)
    if isinstance(body, dict):
        inner = body.get("error") if isinstance(body.get("error"), dict) else body
        if inner.get("type") == "rate_limit_error":
            return True
    return bool(_RATE_LIMIT_MESSAGE.search(str(error)))


class AnthropicProvider:
    """Generation contract over the Anthropic Messages API"""

    def __init__(self, model: str = ANTHROPIC_MODEL, api_key: Optional[str] = None,
                 timeout: float = GENERATION_TIMEOUT_SECONDS):
        self.model = model
        self.api_key = api_key or ANTHROPIC_API_KEY
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise UpstreamError("ANTHROPIC_API_KEY is not configured", {"service": "anthropic"})
            from anthropic import AsyncAnthropic
            # retries belong to the gateway, not the SDK
            self._client = AsyncAnthropic(api_key=self.api_key, max_retries=0, timeout=self.timeout)
        return self._client

    async def complete(self, system_prompt: str, content: str,
                       max_tokens: int, temperature: float) -> ProviderResponse:
        client = self._get_client()
        response = await client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": content}],
        )

        text = "".join(
            block.text for block in response.content
            if getattr(block, "type", None) == "text"
        )
        usage = getattr(response, "usage", None)
        return ProviderResponse(
            text=text,
            model=getattr(response, "model", None) or self.model,
            input_tokens=getattr(usage, "input_tokens", None),
            output_tokens=getattr(usage, "output_tokens", None),
        )


class GenerationGateway:
    def __init__(self, provider: GenerationProvider, limiter: TokenWindowLimiter,
                 token_manager: TokenManager,
                 max_retries: int = RATE_LIMIT_MAX_RETRIES,
                 backoff_seconds: float = RATE_LIMIT_BACKOFF_SECONDS,
                 timeout: Optional[float] = GENERATION_TIMEOUT_SECONDS,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.provider = provider
        self.limiter = limiter
        self.token_manager = token_manager
        self.max_retries = max(0, max_retries)
        self.backoff_seconds = backoff_seconds
        self.timeout = timeout
        self._sleep = sleep

    async def _dispatch(self, system_prompt: str, content: str,
                        max_tokens: int, temperature: float) -> ProviderResponse:
        call = self.provider.complete(system_prompt, content, max_tokens, temperature)
        if self.timeout:
            return await asyncio.wait_for(call, timeout=self.timeout)
        return await call

    async def generate(self, system_prompt: str, content: str,
                       max_output_tokens: Optional[int] = None,
                       temperature: Optional[float] = None,
                       task_type: str = "generation") -> GeneratedText:
        """
        Run one generation call through admission, timeout and retry.

        Raises BudgetExceededError when the call alone is larger than the
        per-minute budget, UpstreamError for any provider failure or when
        rate limiting outlives the retries.
        """
        max_tokens = DEFAULT_MAX_TOKENS if max_output_tokens is None else max_output_tokens
        temp = DEFAULT_TEMPERATURE if temperature is None else temperature
        estimate = self.token_manager.estimate(system_prompt, content, max_tokens)
        request_id = str(uuid.uuid4())
        delay = self.backoff_seconds
        attempt = 0

        while True:
            attempt += 1
            # each attempt is a fresh dispatch and pays for its own admission
            await self.limiter.reserve(estimate.total_tokens)
            try:
                response = await self._dispatch(system_prompt, content, max_tokens, temp)
            except asyncio.TimeoutError as e:
                raise UpstreamError(
                    f"Generation service did not answer within {self.timeout}s",
                    {"request_id": request_id, "task_type": task_type, "attempt": attempt},
                ) from e
            except TenderMatchError:
                raise
            except Exception as e:
                if not is_rate_limit_error(e):
                    error_handler.log_error(e, {"operation": "generate", "task_type": task_type})
                    raise error_handler.handle_upstream_error("anthropic", e) from e
                if attempt > self.max_retries:
                    throttled = RateLimitedError(
                        "Generation service kept rate limiting",
                        {"request_id": request_id, "attempts": attempt},
                    )
                    raise UpstreamError(
                        f"Rate limited on all {attempt} attempts",
                        {"request_id": request_id, "task_type": task_type, "attempts": attempt},
                    ) from throttled
                logger.warning(
                    f"Rate limited on attempt {attempt} for {task_type} "
                    f"(request {request_id}); backing off {delay:.1f}s"
                )
            else:
                self.token_manager.record_usage(
                    request_id, response.model, task_type, estimate,
                    response.input_tokens, response.output_tokens, attempts=attempt,
                )
                return GeneratedText(
                    text=response.text,
                    model=response.model,
                    request_id=request_id,
                    attempts=attempt,
                    estimated_tokens=estimate.total_tokens,
                    input_tokens=response.input_tokens,
                    output_tokens=response.output_tokens,
                )
            finally:
                self.limiter.release()

            await self._sleep(delay)
            delay *= 2


def create_default_gateway() -> GenerationGateway:
    """Gateway wired from environment settings"""
    return GenerationGateway(
        provider=AnthropicProvider(),
        limiter=TokenWindowLimiter(
            tokens_per_minute=TOKENS_PER_MINUTE,
            min_interval=MIN_CALL_INTERVAL_SECONDS,
            max_in_flight=MAX_IN_FLIGHT_GENERATIONS,
        ),
        token_manager=TokenManager(),
    )
