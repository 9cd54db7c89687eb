"""
Configuration settings for Gradeline.

This module provides the Config class with all settings.
Values come from environment variables (optionally loaded from a .env file),
with paths relative to GRADELINE_BASE_DIR when it is set.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# First .env found wins
for env_path in [
    Path.cwd() / ".env",
    Path(__file__).parent.parent / ".env",  # Package root (running from source)
    Path.home() / ".gradeline" / ".env",
]:
    if env_path.exists():
        load_dotenv(env_path, override=True)
        break


def _get_base_dir():
    """Get base directory, preferring environment variable or user config."""
    if os.getenv("GRADELINE_BASE_DIR"):
        return Path(os.getenv("GRADELINE_BASE_DIR"))
    user_dir = Path.home() / ".gradeline"
    if user_dir.exists():
        return user_dir
    return Path(__file__).parent.parent


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    """Main configuration class for Gradeline."""

    # Paths - can be overridden via GRADELINE_BASE_DIR env var
    BASE_DIR = _get_base_dir()
    DATA_DIR = BASE_DIR / "data"
    CACHE_PATH = DATA_DIR / "cache"
    RESULTS_PATH = Path(os.getenv("GRADELINE_RESULTS_DIR", str(DATA_DIR / "results")))

    # LLM Settings
    LLM_PROVIDER = os.getenv("GRADELINE_LLM_PROVIDER", "anthropic")

    # Provider routing profile used when --profile is not given
    PROVIDER_PROFILE = os.getenv("GRADELINE_PROVIDER_PROFILE", "default")
    PROVIDER_PROFILES_PATH = Path(__file__).parent / "provider_profiles.yaml"

    # API Keys
    ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
    DEEPSEEK_API_KEY = os.getenv("DEEPSEEK_API_KEY")

    # Models
    ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")
    DEEPSEEK_MODEL = os.getenv("DEEPSEEK_MODEL", "deepseek-chat")
    OLLAMA_MODEL = os.getenv("GRADELINE_OLLAMA_MODEL", "qwen2.5:14b")
    OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")

    # Request settings
    GRADING_MAX_TOKENS = int(os.getenv("GRADELINE_GRADING_MAX_TOKENS", "8000"))
    GAP_FILL_MAX_TOKENS = int(os.getenv("GRADELINE_GAP_FILL_MAX_TOKENS", "2000"))
    GRADING_TEMPERATURE = float(os.getenv("GRADELINE_GRADING_TEMPERATURE", "0.2"))
    REQUEST_TIMEOUT = int(os.getenv("GRADELINE_REQUEST_TIMEOUT", "300"))  # seconds

    # Cache Settings
    CACHE_ENABLED = _env_flag("GRADELINE_CACHE_ENABLED", "true")
    CACHE_TTL = 3600  # seconds

    # Narrative extraction settings
    MAX_EXPLANATION_CHARS = int(os.getenv("GRADELINE_MAX_EXPLANATION_CHARS", "500"))
    PLACEHOLDER_CHARS = int(os.getenv("GRADELINE_PLACEHOLDER_CHARS", "500"))

    # Gap-fill: one follow-up request for questions missing from the narrative
    GAP_FILL_ENABLED = _env_flag("GRADELINE_GAP_FILL_ENABLED", "true")

    # Letter grade thresholds (percentage, inclusive lower bounds)
    GRADE_THRESHOLDS = [("A", 90.0), ("B", 80.0), ("C", 70.0), ("D", 60.0)]

    # Rate Limiting Settings
    # None means unlimited (e.g. local Ollama)
    PROVIDER_RATE_LIMITS = {
        "anthropic": {
            "requests_per_minute": int(os.getenv("ANTHROPIC_RPM", "50")),
            "tokens_per_minute": int(os.getenv("ANTHROPIC_TPM", "40000")),
        },
        "deepseek": {
            "requests_per_minute": None,
            "tokens_per_minute": None,
        },
        "ollama": {
            "requests_per_minute": None,
            "tokens_per_minute": None,
        },
    }

    @classmethod
    def ensure_dirs(cls):
        """Create all necessary directories."""
        cls.DATA_DIR.mkdir(parents=True, exist_ok=True)
        cls.CACHE_PATH.mkdir(parents=True, exist_ok=True)
        cls.RESULTS_PATH.mkdir(parents=True, exist_ok=True)
