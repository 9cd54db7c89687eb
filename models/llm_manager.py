"""
LLM Manager for Gradeline.
Handles interactions with Anthropic, DeepSeek and Ollama, in one block or streamed.
"""

import json
import requests
import hashlib
import time
import logging
from typing import Optional, Dict, Any, Iterator, Tuple
from dataclasses import dataclass

from config import Config
from core.rate_limiter import RateLimitTracker

logger = logging.getLogger(__name__)

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
DEEPSEEK_URL = "https://api.deepseek.com/v1/chat/completions"

SUPPORTED_PROVIDERS = ("anthropic", "deepseek", "ollama")

MAX_RETRIES = 3
BASE_DELAY = 2  # seconds

# One tracker per process so every manager sees the same usage window
_rate_limiter: Optional[RateLimitTracker] = None


def get_rate_limiter() -> RateLimitTracker:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimitTracker(Config.PROVIDER_RATE_LIMITS)
    return _rate_limiter


@dataclass
class LLMResponse:
    """Response from LLM."""

    text: str
    model: str
    success: bool
    error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class LLMError(Exception):
    """Transport or API failure while streaming a response."""


def parse_sse_line(line: str) -> Optional[Dict[str, Any]]:
    """Decode one server-sent-events line into its JSON payload.

    Returns None for comments, event names, keep-alives and the [DONE] marker.
    """
    if not line or not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if not data or data == "[DONE]":
        return None
    try:
        return json.loads(data)
    except json.JSONDecodeError:
        logger.debug(f"Skipping undecodable stream line: {data[:80]}")
        return None


def anthropic_stream_text(event: Dict[str, Any]) -> str:
    """Text carried by an Anthropic streaming event, if any."""
    if event.get("type") == "error":
        raise LLMError(f"Anthropic stream error: {event.get('error')}")
    if event.get("type") != "content_block_delta":
        return ""
    delta = event.get("delta") or {}
    return delta.get("text", "") if delta.get("type", "text_delta") == "text_delta" else ""


def openai_stream_text(event: Dict[str, Any]) -> str:
    """Text carried by an OpenAI-compatible chat completion chunk."""
    choices = event.get("choices") or []
    if not choices:
        return ""
    return (choices[0].get("delta") or {}).get("content") or ""


def ollama_stream_text(line: str) -> str:
    """Text carried by one NDJSON line of an Ollama /api/generate stream."""
    if not line.strip():
        return ""
    try:
        chunk = json.loads(line)
    except json.JSONDecodeError:
        logger.debug(f"Skipping undecodable stream line: {line[:80]}")
        return ""
    if chunk.get("error"):
        raise LLMError(f"Ollama error: {chunk['error']}")
    return chunk.get("response", "")


class LLMManager:
    """Manages LLM interactions for Gradeline.

    Usage:
        llm = LLMManager(provider="anthropic")
        response = llm.generate("Grade this exam...", system="You are an examiner")
        if response.success:
            print(response.text)

        for fragment in llm.generate_stream("Grade this exam..."):
            print(fragment, end="")
    """

    def __init__(
        self, provider: Optional[str] = None, base_url: Optional[str] = None, quiet: bool = False
    ):
        """Initialize LLM manager.

        Args:
            provider: LLM provider ("anthropic", "deepseek", "ollama");
                defaults to Config.LLM_PROVIDER
            base_url: Base URL for API (for Ollama)
            quiet: If True, log cache hits at debug level only
        """
        self.provider = provider or Config.LLM_PROVIDER
        self.base_url = (base_url or Config.OLLAMA_BASE_URL).rstrip("/")
        self.quiet = quiet

        if self.provider == "anthropic":
            self.primary_model = Config.ANTHROPIC_MODEL
        elif self.provider == "deepseek":
            self.primary_model = Config.DEEPSEEK_MODEL
        else:
            self.primary_model = Config.OLLAMA_MODEL

        # Cache settings
        self.cache_enabled = Config.CACHE_ENABLED
        self.cache_ttl = Config.CACHE_TTL
        self.cache_dir = Config.CACHE_PATH / "llm"
        if self.cache_enabled:
            self.cache_dir.mkdir(parents=True, exist_ok=True)

        self.cache_hits = 0
        self.cache_misses = 0

        self.rate_limiter = get_rate_limiter()
        logger.debug(f"Initialized LLMManager with provider '{self.provider}'")

    # ==================== CACHE ====================

    def _generate_cache_key(
        self,
        provider: str,
        model: str,
        prompt: str,
        system: Optional[str],
        temperature: float,
        json_mode: bool,
    ) -> str:
        """SHA256 of every request parameter that affects the output."""
        cache_string = json.dumps(
            {
                "provider": provider,
                "model": model,
                "prompt": prompt,
                "system": system or "",
                "temperature": temperature,
                "json_mode": json_mode,
            },
            sort_keys=True,
        )
        return hashlib.sha256(cache_string.encode()).hexdigest()

    def _get_cached_response(self, cache_key: str) -> Optional[LLMResponse]:
        """Retrieve cached response if available and not expired."""
        if not self.cache_enabled:
            return None

        cache_file = self.cache_dir / f"{cache_key}.json"
        if not cache_file.exists():
            return None

        try:
            with open(cache_file, "r") as f:
                cache_data = json.load(f)

            if time.time() - cache_data.get("timestamp", 0) > self.cache_ttl:
                cache_file.unlink()
                return None

            self.cache_hits += 1
            if not self.quiet:
                logger.info("[CACHE HIT] Using cached response")

            return LLMResponse(
                text=cache_data.get("text", ""),
                model=cache_data.get("model", ""),
                success=cache_data.get("success", False),
                error=cache_data.get("error"),
                metadata=cache_data.get("metadata"),
            )
        except (OSError, ValueError) as e:
            logger.warning(f"[CACHE ERROR] Failed to read cache: {e}")
            return None

    def _save_to_cache(self, cache_key: str, response: LLMResponse):
        if not self.cache_enabled:
            return

        cache_file = self.cache_dir / f"{cache_key}.json"
        try:
            cache_data = {
                "timestamp": time.time(),
                "text": response.text,
                "model": response.model,
                "success": response.success,
                "error": response.error,
                "metadata": response.metadata,
            }
            with open(cache_file, "w") as f:
                json.dump(cache_data, f, indent=2)
            self.cache_misses += 1
        except (OSError, TypeError) as e:
            logger.warning(f"[CACHE ERROR] Failed to save cache: {e}")

    def get_cache_stats(self) -> Dict[str, Any]:
        total = self.cache_hits + self.cache_misses
        hit_rate = (self.cache_hits / total * 100) if total > 0 else 0
        return {
            "hits": self.cache_hits,
            "misses": self.cache_misses,
            "total": total,
            "hit_rate": round(hit_rate, 2),
        }

    # ==================== REQUEST BUILDING ====================

    def _missing_key_error(self) -> Optional[str]:
        if self.provider == "anthropic" and not Config.ANTHROPIC_API_KEY:
            return "ANTHROPIC_API_KEY not set. Get one at https://console.anthropic.com"
        if self.provider == "deepseek" and not Config.DEEPSEEK_API_KEY:
            return "DEEPSEEK_API_KEY not set. Get one at https://platform.deepseek.com"
        return None

    def _build_request(
        self,
        prompt: str,
        model: str,
        system: Optional[str],
        temperature: float,
        max_tokens: Optional[int],
        json_mode: bool,
        stream: bool,
    ) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        """URL, JSON payload and headers for the configured provider."""
        if self.provider == "anthropic":
            payload = {
                "model": model,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": max_tokens or 4096,
                "temperature": temperature,
                "stream": stream,
            }
            if system:
                payload["system"] = system
            headers = {
                "x-api-key": Config.ANTHROPIC_API_KEY or "",
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            }
            return ANTHROPIC_URL, payload, headers

        if self.provider == "deepseek":
            messages = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({"role": "user", "content": prompt})
            payload = {
                "model": model,
                "messages": messages,
                "temperature": temperature,
                "stream": stream,
            }
            if json_mode:
                payload["response_format"] = {"type": "json_object"}
            if max_tokens:
                payload["max_tokens"] = max_tokens
            headers = {
                "Authorization": f"Bearer {Config.DEEPSEEK_API_KEY}",
                "Content-Type": "application/json",
            }
            return DEEPSEEK_URL, payload, headers

        payload = {
            "model": model,
            "prompt": prompt,
            "stream": stream,
            "options": {"temperature": temperature},
        }
        if system:
            payload["system"] = system
        if max_tokens:
            payload["options"]["num_predict"] = max_tokens
        if json_mode:
            payload["format"] = "json"
        return f"{self.base_url}/api/generate", payload, {}

    def _parse_response(self, result: Dict[str, Any], model: str) -> LLMResponse:
        if self.provider == "anthropic":
            text = "".join(
                block.get("text", "") for block in result.get("content", []) if block.get("type") == "text"
            )
            metadata = {"usage": result.get("usage"), "stop_reason": result.get("stop_reason")}
        elif self.provider == "deepseek":
            choice = result["choices"][0]
            text = choice["message"]["content"]
            metadata = {"usage": result.get("usage"), "finish_reason": choice.get("finish_reason")}
        else:
            text = result.get("response", "")
            metadata = {"eval_count": result.get("eval_count")}
        return LLMResponse(text=text, model=model, success=True, metadata=metadata)

    def _http_error_message(self, error: requests.exceptions.HTTPError) -> str:
        status = error.response.status_code if error.response is not None else None
        name = self.provider.title()
        if status == 401:
            return f"Invalid {self.provider.upper()}_API_KEY. Check your API key."
        if status == 400:
            try:
                return f"{name} API error: {error.response.json()}"
            except ValueError:
                return f"{name} API error: {error} - {error.response.text}"
        return f"{name} API error: {error}"

    def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str], stream: bool):
        """POST with exponential backoff on HTTP 429.

        Raises:
            requests.exceptions.RequestException: On any other failure, or when
                retries are exhausted
        """
        for attempt in range(MAX_RETRIES):
            response = requests.post(
                url, json=payload, headers=headers, timeout=Config.REQUEST_TIMEOUT, stream=stream
            )
            if response.status_code == 429 and attempt < MAX_RETRIES - 1:
                delay = BASE_DELAY * (2**attempt)
                logger.warning(
                    f"Rate limit hit on '{self.provider}', retrying in {delay}s "
                    f"(attempt {attempt + 1}/{MAX_RETRIES})"
                )
                response.close()
                time.sleep(delay)
                continue
            response.raise_for_status()
            return response
        raise requests.exceptions.RetryError("Rate limit exceeded. All retries exhausted.")

    def _record_usage(self, response: LLMResponse):
        tokens_used = 0
        usage = (response.metadata or {}).get("usage")
        if isinstance(usage, dict):
            tokens_used = usage.get("total_tokens", 0) or (
                usage.get("input_tokens", 0) + usage.get("output_tokens", 0)
            )
        self.rate_limiter.record_request(self.provider, tokens_used=tokens_used)

    # ==================== PUBLIC API ====================

    def generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        system: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Generate text from LLM in one block.

        Args:
            prompt: User prompt
            model: Model to use (defaults to the provider's configured model)
            system: System prompt
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            json_mode: Force JSON output

        Returns:
            LLMResponse; failures are reported with success=False
        """
        model = model or self.primary_model

        if self.provider not in SUPPORTED_PROVIDERS:
            return LLMResponse(
                text="", model=model, success=False, error=f"Provider {self.provider} not supported"
            )

        key_error = self._missing_key_error()
        if key_error:
            return LLMResponse(text="", model=model, success=False, error=key_error)

        cache_key = self._generate_cache_key(
            self.provider, model, prompt, system, temperature, json_mode
        )
        cached_response = self._get_cached_response(cache_key)
        if cached_response:
            return cached_response

        self.rate_limiter.wait_if_needed(self.provider)

        url, payload, headers = self._build_request(
            prompt, model, system, temperature, max_tokens, json_mode, stream=False
        )
        try:
            http_response = self._post(url, payload, headers, stream=False)
            response = self._parse_response(http_response.json(), model)
        except requests.exceptions.HTTPError as e:
            return LLMResponse(text="", model=model, success=False, error=self._http_error_message(e))
        except requests.exceptions.ConnectionError:
            if self.provider == "ollama":
                error = "Cannot connect to Ollama. Is it running? (ollama serve)"
            else:
                error = f"Cannot connect to {self.provider.title()} API"
            return LLMResponse(text="", model=model, success=False, error=error)
        except requests.exceptions.Timeout:
            return LLMResponse(
                text="", model=model, success=False, error="Request timed out. Model might be too slow."
            )
        except (requests.exceptions.RequestException, KeyError, IndexError, ValueError) as e:
            return LLMResponse(
                text="", model=model, success=False, error=f"{self.provider.title()} error: {e}"
            )

        self._record_usage(response)
        self._save_to_cache(cache_key, response)
        return response

    def generate_stream(
        self,
        prompt: str,
        model: Optional[str] = None,
        system: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> Iterator[str]:
        """Generate text from LLM, yielding fragments as they arrive.

        Streams are never cached.

        Raises:
            LLMError: On missing API key or any transport/API failure
        """
        model = model or self.primary_model

        if self.provider not in SUPPORTED_PROVIDERS:
            raise LLMError(f"Provider {self.provider} not supported")

        key_error = self._missing_key_error()
        if key_error:
            raise LLMError(key_error)

        self.rate_limiter.wait_if_needed(self.provider)

        url, payload, headers = self._build_request(
            prompt, model, system, temperature, max_tokens, json_mode=False, stream=True
        )
        try:
            http_response = self._post(url, payload, headers, stream=True)
        except requests.exceptions.HTTPError as e:
            raise LLMError(self._http_error_message(e)) from e
        except requests.exceptions.RequestException as e:
            raise LLMError(f"{self.provider.title()} error: {e}") from e

        try:
            for line in http_response.iter_lines(decode_unicode=True):
                if self.provider == "ollama":
                    text = ollama_stream_text(line)
                else:
                    event = parse_sse_line(line)
                    if event is None:
                        continue
                    if self.provider == "anthropic":
                        text = anthropic_stream_text(event)
                    else:
                        text = openai_stream_text(event)
                if text:
                    yield text
        except requests.exceptions.RequestException as e:
            raise LLMError(f"{self.provider.title()} stream interrupted: {e}") from e
        finally:
            http_response.close()

        self.rate_limiter.record_request(self.provider)

    @staticmethod
    def is_provider_available(provider: str) -> bool:
        """Check if a provider is available (has API key configured).

        Used by ProviderRouter to decide between primary and fallback.
        """
        if provider == "ollama":
            return True
        if provider == "anthropic":
            return bool(Config.ANTHROPIC_API_KEY)
        if provider == "deepseek":
            return bool(Config.DEEPSEEK_API_KEY)
        return False
