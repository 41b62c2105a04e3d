"""
Token Management for the TenderMatch backend
Handles cost estimation and usage tracking for generation calls
"""

import logging
import math
from collections import defaultdict, deque
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Dict, Optional

from shared_utils import CHARS_PER_TOKEN, looks_like_binary_payload

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class TokenEstimate:
    """Estimated cost of one generation call"""
    input_tokens: int
    output_tokens: int
    binary_suspect: bool = False

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

@dataclass
class TokenUsage:
    """Record of token usage for a request"""
    request_id: str
    model: str
    task_type: str
    estimated_tokens: int
    input_tokens: int
    output_tokens: int
    total_tokens: int
    attempts: int
    timestamp: datetime

class TokenManager:
    """Cost estimation and usage accounting for generation calls"""

    def __init__(self, chars_per_token: int = CHARS_PER_TOKEN, history_size: int = 1000):
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token
        self.usage_history: deque = deque(maxlen=history_size)

    def estimate_tokens(self, text: str) -> int:
        """Estimate token count for text (rough approximation)"""
        # 1 token ~ chars_per_token characters for prose
        if not text:
            return 0
        return max(1, math.ceil(len(text) / self.chars_per_token))

    def estimate(self, system_prompt: str, content: str, max_output_tokens: int) -> TokenEstimate:
        """Estimate the budget cost of a call: prompt characters plus the output ceiling"""
        binary_suspect = looks_like_binary_payload(content) or looks_like_binary_payload(system_prompt)
        if binary_suspect:
            logger.warning(
                "Generation input looks like an embedded binary payload; "
                "token estimate may be far off (%d chars)", len(content or "")
            )
        return TokenEstimate(
            input_tokens=self.estimate_tokens(system_prompt) + self.estimate_tokens(content),
            output_tokens=max(0, int(max_output_tokens)),
            binary_suspect=binary_suspect,
        )

    def record_usage(self, request_id: str, model: str, task_type: str,
                     estimate: TokenEstimate, input_tokens: Optional[int],
                     output_tokens: Optional[int], attempts: int = 1) -> TokenUsage:
        """Record actual token usage after request completion"""
        # Fall back to the estimate when the provider does not report usage
        actual_in = input_tokens if input_tokens is not None else estimate.input_tokens
        actual_out = output_tokens if output_tokens is not None else 0

        usage = TokenUsage(
            request_id=request_id,
            model=model,
            task_type=task_type,
            estimated_tokens=estimate.total_tokens,
            input_tokens=actual_in,
            output_tokens=actual_out,
            total_tokens=actual_in + actual_out,
            attempts=attempts,
            timestamp=datetime.now(timezone.utc),
        )
        self.usage_history.append(usage)

        logger.info(
            f"Recorded usage for {task_type} on {model}: {usage.total_tokens} tokens "
            f"(estimated {usage.estimated_tokens}, attempts {attempts}, request {request_id})"
        )
        return usage

    def get_usage_stats(self) -> Dict:
        """Get usage statistics"""
        usage_list = list(self.usage_history)

        if not usage_list:
            return {"total_tokens": 0, "total_requests": 0, "task_types": {}}

        task_stats = defaultdict(lambda: {"tokens": 0, "requests": 0, "retried": 0})
        for usage in usage_list:
            task_stats[usage.task_type]["tokens"] += usage.total_tokens
            task_stats[usage.task_type]["requests"] += 1
            if usage.attempts > 1:
                task_stats[usage.task_type]["retried"] += 1

        return {
            "total_tokens": sum(usage.total_tokens for usage in usage_list),
            "estimated_tokens": sum(usage.estimated_tokens for usage in usage_list),
            "total_requests": len(usage_list),
            "task_types": dict(task_stats),
            "last_request": asdict(usage_list[-1]),
        }
