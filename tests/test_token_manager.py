# tests/test_token_manager.py
import base64

import pytest

from token_manager import TokenEstimate, TokenManager


def test_estimate_tokens_rounds_up():
    manager = TokenManager(chars_per_token=4)
    assert manager.estimate_tokens("") == 0
    assert manager.estimate_tokens("abc") == 1
    assert manager.estimate_tokens("abcd") == 1
    assert manager.estimate_tokens("abcde") == 2


def test_estimate_adds_output_ceiling():
    manager = TokenManager(chars_per_token=4)
    estimate = manager.estimate("You are an assistant.", "Company profile text", 500)
    assert estimate.input_tokens == 6 + 5
    assert estimate.output_tokens == 500
    assert estimate.total_tokens == 511
    assert estimate.binary_suspect is False


@pytest.mark.parametrize("content", [
    "%PDF-1.7\n1 0 obj",
    "see data:application/pdf;base64,JVBERi0xLjcK",
    base64.b64encode(bytes(range(256)) * 2).decode(),
])
def test_binary_payloads_are_flagged(content):
    estimate = TokenManager().estimate("system", content, 10)
    assert estimate.binary_suspect is True


def test_rejects_non_positive_ratio():
    with pytest.raises(ValueError):
        TokenManager(chars_per_token=0)


def test_record_usage_prefers_reported_counts():
    manager = TokenManager()
    estimate = TokenEstimate(input_tokens=300, output_tokens=1000)
    usage = manager.record_usage("req-1", "model-x", "tender_ready:checks", estimate, 280, 90)
    assert usage.total_tokens == 370
    assert usage.estimated_tokens == 1300


def test_record_usage_falls_back_to_estimate():
    manager = TokenManager()
    estimate = TokenEstimate(input_tokens=300, output_tokens=1000)
    usage = manager.record_usage("req-1", "model-x", "report", estimate, None, None)
    assert usage.input_tokens == 300
    assert usage.output_tokens == 0


def test_usage_stats():
    manager = TokenManager()
    assert manager.get_usage_stats() == {"total_tokens": 0, "total_requests": 0, "task_types": {}}

    estimate = TokenEstimate(input_tokens=10, output_tokens=20)
    manager.record_usage("r1", "m", "checks", estimate, 10, 5)
    manager.record_usage("r2", "m", "checks", estimate, 10, 5, attempts=2)
    manager.record_usage("r3", "m", "report", estimate, 4, 4)

    stats = manager.get_usage_stats()
    assert stats["total_requests"] == 3
    assert stats["total_tokens"] == 38
    assert stats["estimated_tokens"] == 90
    assert stats["task_types"]["checks"] == {"tokens": 30, "requests": 2, "retried": 1}
    assert stats["task_types"]["report"] == {"tokens": 8, "requests": 1, "retried": 0}
    assert stats["last_request"]["request_id"] == "r3"


def test_history_is_bounded():
    manager = TokenManager(history_size=2)
    estimate = TokenEstimate(input_tokens=1, output_tokens=1)
    for i in range(5):
        manager.record_usage(f"r{i}", "m", "t", estimate, 1, 1)
    assert manager.get_usage_stats()["total_requests"] == 2
