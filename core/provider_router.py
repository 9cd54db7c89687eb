"""
Provider Router for Task-Based LLM Provider Selection.

Routes each grading task (full narrative, gap-fill follow-up) to a provider
according to a named profile loaded from YAML. When the primary provider is
unavailable (no API key configured) the router falls back to the profile's
fallback provider and logs the decision explicitly.
"""

import yaml
import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Any, List
from dataclasses import dataclass

from core.task_types import TaskType
from config import Config
from models.llm_manager import LLMManager

logger = logging.getLogger(__name__)


@dataclass
class TaskConfig:
    """Configuration for a specific task type within a profile."""

    enabled: bool
    primary: Optional[str]  # Primary provider name
    fallback: Optional[str]  # Fallback provider name (None = no fallback)

    def __post_init__(self):
        if self.enabled and not self.primary:
            raise ValueError("enabled=true requires a primary provider")


@dataclass
class ProviderProfile:
    """Complete profile defining provider routing for all task types."""

    name: str
    description: str
    tasks: Dict[str, TaskConfig]  # Maps task_type -> TaskConfig

    def get_task_config(self, task_type: TaskType) -> TaskConfig:
        """Get configuration for a specific task type.

        Raises:
            ValueError: If task type not configured or disabled
        """
        task_key = task_type.value
        if task_key not in self.tasks:
            raise ValueError(
                f"Task type '{task_type.value}' not configured in profile '{self.name}'"
            )

        config = self.tasks[task_key]
        if not config.enabled:
            raise ValueError(
                f"Task type '{task_type.value}' is disabled in profile '{self.name}'"
            )

        return config


class ProviderRouter:
    """
    Routes tasks to LLM providers based on profiles.

    Usage:
        router = ProviderRouter()
        provider = router.route(TaskType.GRADING, "default")
        llm = LLMManager(provider=provider)
    """

    def __init__(self, profiles_path: Optional[Path] = None):
        """Initialize provider router.

        Args:
            profiles_path: Path to provider profiles YAML file.
                          Defaults to Config.PROVIDER_PROFILES_PATH
        """
        self.profiles_path = Path(profiles_path or Config.PROVIDER_PROFILES_PATH)
        self.profiles: Dict[str, ProviderProfile] = {}
        self._lock = threading.RLock()

        self._load_profiles()

        logger.info(f"ProviderRouter initialized with {len(self.profiles)} profiles")

    def _load_profiles(self):
        """Load provider profiles from YAML configuration.

        Raises:
            FileNotFoundError: If profiles file not found
            ValueError: If profiles file is invalid
        """
        with self._lock:
            if not self.profiles_path.exists():
                raise FileNotFoundError(
                    f"Provider profiles configuration not found: {self.profiles_path}"
                )

            try:
                with open(self.profiles_path, "r") as f:
                    config_data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Failed to parse provider profiles YAML: {e}")

            if not config_data or "profiles" not in config_data:
                raise ValueError("Invalid profiles configuration: missing 'profiles' key")

            profiles = {}
            try:
                for profile_name, profile_data in config_data["profiles"].items():
                    tasks = {}

                    for task_name, task_data in (profile_data.get("tasks") or {}).items():
                        try:
                            TaskType.from_string(task_name)
                        except ValueError as e:
                            logger.warning(
                                f"Skipping invalid task type '{task_name}' in profile '{profile_name}': {e}"
                            )
                            continue

                        tasks[task_name] = TaskConfig(
                            enabled=task_data.get("enabled", True),
                            primary=task_data.get("primary"),
                            fallback=task_data.get("fallback"),
                        )

                    profiles[profile_name] = ProviderProfile(
                        name=profile_name,
                        description=profile_data.get("description", ""),
                        tasks=tasks,
                    )
            except (AttributeError, TypeError, ValueError) as e:
                raise ValueError(f"Failed to load provider profiles: {e}")

            self.profiles = profiles
            logger.info(f"Loaded {len(self.profiles)} provider profiles from {self.profiles_path}")

    def route(self, task_type: TaskType, profile_name: str) -> str:
        """Route a task to the appropriate provider.

        Args:
            task_type: Type of task to route
            profile_name: Profile name (e.g., "default", "budget", "local")

        Returns:
            Provider name to use (e.g., "anthropic", "deepseek")

        Raises:
            ValueError: If profile not found, task disabled, or no providers available
        """
        profile = self.get_profile(profile_name)

        try:
            task_config = profile.get_task_config(task_type)
        except ValueError as e:
            logger.error(f"[ROUTING ERROR] {e}")
            raise

        primary = task_config.primary
        logger.info(
            f"[ROUTING] Task: {task_type.value}, Profile: {profile_name}, Primary: {primary}"
        )

        if LLMManager.is_provider_available(primary):
            return primary

        fallback = task_config.fallback
        if fallback is None:
            logger.error(
                f"[ROUTING ERROR] Primary provider '{primary}' unavailable and no fallback configured"
            )
            raise ValueError(
                f"Primary provider '{primary}' is unavailable for task '{task_type.value}' "
                f"in profile '{profile_name}', and no fallback is configured."
            )

        logger.warning(
            f"[FALLBACK] Primary provider '{primary}' unavailable, attempting fallback to '{fallback}'"
        )

        if LLMManager.is_provider_available(fallback):
            logger.warning(
                f"[FALLBACK SUCCESS] Using '{fallback}' as fallback for '{primary}' "
                f"(task: {task_type.value}, profile: {profile_name})"
            )
            return fallback

        logger.error(
            f"[FALLBACK FAILED] Both primary ('{primary}') and fallback ('{fallback}') "
            f"unavailable for task '{task_type.value}' in profile '{profile_name}'"
        )
        raise ValueError(
            f"No available providers for task '{task_type.value}' in profile '{profile_name}'. "
            f"Please check API keys and provider status."
        )

    def get_profile(self, profile_name: str) -> ProviderProfile:
        """Get a profile by name.

        Raises:
            ValueError: If profile not found
        """
        if profile_name not in self.profiles:
            available = ", ".join(self.profiles.keys())
            raise ValueError(f"Profile '{profile_name}' not found. Available profiles: {available}")

        return self.profiles[profile_name]

    def list_profiles(self) -> List[str]:
        return list(self.profiles.keys())

    def get_profile_info(self, profile_name: str) -> Dict[str, Any]:
        """Get detailed information about a profile, for display."""
        profile = self.get_profile(profile_name)

        tasks_info = {
            task_name: {
                "enabled": task_config.enabled,
                "primary": task_config.primary,
                "fallback": task_config.fallback,
            }
            for task_name, task_config in profile.tasks.items()
        }

        return {"name": profile.name, "description": profile.description, "tasks": tasks_info}
