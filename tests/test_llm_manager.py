"""
Tests for LLMManager request handling and stream decoding.

No network access: requests.post is replaced by a fake for the
request-level tests.
"""

import sys
import os
import json

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from config import Config
from models import llm_manager
from models.llm_manager import (
    LLMError,
    LLMManager,
    anthropic_stream_text,
    ollama_stream_text,
    openai_stream_text,
    parse_sse_line,
)


class FakeResponse:
    """Stands in for requests.Response."""

    def __init__(self, status_code=200, payload=None, lines=None):
        self.status_code = status_code
        self._payload = payload or {}
        self._lines = lines or []
        self.closed = False

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            error = llm_manager.requests.exceptions.HTTPError(f"HTTP {self.status_code}")
            error.response = self
            raise error

    def iter_lines(self, decode_unicode=False):
        return iter(self._lines)

    def close(self):
        self.closed = True


class FakePost:
    """Records calls and replays a fixed response."""

    def __init__(self, response):
        self.response = response
        self.calls = []

    def __call__(self, url, json=None, headers=None, timeout=None, stream=False):
        self.calls.append({"url": url, "json": json, "headers": headers, "stream": stream})
        return self.response


def with_fake_post(fake, fn):
    original_post = llm_manager.requests.post
    original_key = Config.ANTHROPIC_API_KEY
    llm_manager.requests.post = fake
    Config.ANTHROPIC_API_KEY = "test-key"
    try:
        return fn()
    finally:
        llm_manager.requests.post = original_post
        Config.ANTHROPIC_API_KEY = original_key


def make_manager(provider="anthropic"):
    manager = LLMManager(provider=provider, quiet=True)
    manager.cache_enabled = False
    return manager


# ============================================================================
# Test stream line decoding
# ============================================================================


def test_parse_sse_line():
    """Only data lines with JSON payloads are decoded."""
    assert parse_sse_line('data: {"type": "ping"}') == {"type": "ping"}
    assert parse_sse_line("event: content_block_delta") is None
    assert parse_sse_line("data: [DONE]") is None
    assert parse_sse_line("") is None
    assert parse_sse_line("data: {broken") is None
    print("✓ test_parse_sse_line passed")


def test_anthropic_stream_text():
    """Only text deltas carry text; error events raise."""
    delta = {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "1a Mark"}}
    assert anthropic_stream_text(delta) == "1a Mark"
    assert anthropic_stream_text({"type": "message_start", "message": {}}) == ""

    try:
        anthropic_stream_text({"type": "error", "error": {"type": "overloaded_error"}})
        assert False, "Expected LLMError"
    except LLMError as e:
        assert "overloaded_error" in str(e)
    print("✓ test_anthropic_stream_text passed")


def test_openai_stream_text():
    """Chat completion chunks yield their delta content."""
    assert openai_stream_text({"choices": [{"delta": {"content": "2/3"}}]}) == "2/3"
    assert openai_stream_text({"choices": [{"delta": {}}]}) == ""
    assert openai_stream_text({"choices": []}) == ""
    print("✓ test_openai_stream_text passed")


def test_ollama_stream_text():
    """NDJSON lines yield their response text; error lines raise."""
    assert ollama_stream_text(json.dumps({"response": "Partial.", "done": False})) == "Partial."
    assert ollama_stream_text("") == ""

    try:
        ollama_stream_text(json.dumps({"error": "model not found"}))
        assert False, "Expected LLMError"
    except LLMError as e:
        assert "model not found" in str(e)
    print("✓ test_ollama_stream_text passed")


# ============================================================================
# Test LLMManager
# ============================================================================


def test_cache_key_deterministic():
    """Same parameters give the same key; any change gives another."""
    manager = make_manager("ollama")
    key = manager._generate_cache_key("ollama", "m", "prompt", "sys", 0.2, False)

    assert key == manager._generate_cache_key("ollama", "m", "prompt", "sys", 0.2, False)
    assert key != manager._generate_cache_key("ollama", "m", "prompt", "sys", 0.3, False)
    assert len(key) == 64
    print("✓ test_cache_key_deterministic passed")


def test_is_provider_available():
    """Ollama needs no key; hosted providers need one."""
    original = Config.DEEPSEEK_API_KEY
    try:
        Config.DEEPSEEK_API_KEY = None
        assert LLMManager.is_provider_available("ollama")
        assert not LLMManager.is_provider_available("deepseek")
        assert not LLMManager.is_provider_available("unknown")
        Config.DEEPSEEK_API_KEY = "sk-test"
        assert LLMManager.is_provider_available("deepseek")
    finally:
        Config.DEEPSEEK_API_KEY = original
    print("✓ test_is_provider_available passed")


def test_unsupported_provider():
    """Unknown providers fail without raising from generate()."""
    manager = make_manager("mystery")
    response = manager.generate("hello")

    assert not response.success
    assert "not supported" in response.error
    print("✓ test_unsupported_provider passed")


def test_missing_key_stream_raises():
    """Streaming without an API key raises LLMError on first use."""
    original = Config.ANTHROPIC_API_KEY
    try:
        Config.ANTHROPIC_API_KEY = None
        manager = make_manager("anthropic")
        try:
            list(manager.generate_stream("hello"))
            assert False, "Expected LLMError"
        except LLMError as e:
            assert "ANTHROPIC_API_KEY" in str(e)
    finally:
        Config.ANTHROPIC_API_KEY = original
    print("✓ test_missing_key_stream_raises passed")


def test_generate_anthropic():
    """A successful Messages API reply becomes an LLMResponse."""
    payload = {
        "content": [{"type": "text", "text": "1 Mark: 2/2 - ok."}],
        "usage": {"input_tokens": 10, "output_tokens": 5},
        "stop_reason": "end_turn",
    }
    fake = FakePost(FakeResponse(payload=payload))
    response = with_fake_post(
        fake, lambda: make_manager().generate("grade", system="examiner", max_tokens=100)
    )

    assert response.success
    assert response.text == "1 Mark: 2/2 - ok."
    request = fake.calls[0]
    assert request["json"]["system"] == "examiner"
    assert request["json"]["max_tokens"] == 100
    assert request["headers"]["x-api-key"] == "test-key"
    print("✓ test_generate_anthropic passed")


def test_generate_invalid_key():
    """HTTP 401 becomes an invalid-key error result."""
    fake = FakePost(FakeResponse(status_code=401))
    response = with_fake_post(fake, lambda: make_manager().generate("grade"))

    assert not response.success
    assert "ANTHROPIC_API_KEY" in response.error
    print("✓ test_generate_invalid_key passed")


def test_generate_stream_anthropic():
    """Server-sent events are decoded into text fragments in order."""
    lines = [
        "event: message_start",
        'data: {"type": "message_start", "message": {}}',
        'data: {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "1 Mark: "}}',
        "",
        'data: {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "2/2 - ok."}}',
        'data: {"type": "message_stop"}',
    ]
    http_response = FakeResponse(lines=lines)
    fake = FakePost(http_response)
    fragments = with_fake_post(fake, lambda: list(make_manager().generate_stream("grade")))

    assert fragments == ["1 Mark: ", "2/2 - ok."]
    assert fake.calls[0]["stream"] is True
    assert fake.calls[0]["json"]["stream"] is True
    assert http_response.closed
    print("✓ test_generate_stream_anthropic passed")


def run_all_tests():
    """Run all tests."""
    print("\n" + "=" * 60)
    print("Running LLM Manager Tests")
    print("=" * 60 + "\n")

    test_parse_sse_line()
    test_anthropic_stream_text()
    test_openai_stream_text()
    test_ollama_stream_text()
    test_cache_key_deterministic()
    test_is_provider_available()
    test_unsupported_provider()
    test_missing_key_stream_raises()
    test_generate_anthropic()
    test_generate_invalid_key()
    test_generate_stream_anthropic()

    print("\n" + "=" * 60)
    print("All LLM manager tests passed!")
    print("=" * 60 + "\n")


if __name__ == "__main__":
    run_all_tests()
