"""
Configuration management system for Rent Watch.
"""

import json
import os
from typing import Any, Dict, List, Optional

import yaml

from ..models.config import (
    DEFAULT_DISTRICTS,
    Configuration,
    ConversationConfig,
    DatabaseConfig,
    DispatchConfig,
    ListingSourceConfig,
    LoggingConfig,
    SchedulerConfig,
    TelegramConfig,
)


class ConfigurationManager:
    """Manages loading, validation, and reloading of system configuration."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file. If None, uses default paths.
        """
        self.config_path = config_path or self._find_config_file()
        self._config: Optional[Configuration] = None
        self._last_modified: Optional[float] = None

    def _find_config_file(self) -> str:
        """Find the configuration file in standard locations."""
        possible_paths = [
            "config/config.yaml",
            "config/config.yml",
            "config/config.json",
            "config.yaml",
            "config.yml",
            "config.json",
        ]

        for path in possible_paths:
            if os.path.exists(path):
                return path

        if os.path.exists("config/config.example.yaml"):
            raise ValueError(
                "No configuration file found. Please copy 'config/config.example.yaml' "
                "to 'config/config.yaml' and customize it for your needs."
            )

        raise ValueError(
            "No configuration file found. Please create a configuration file "
            "at one of these locations: " + ", ".join(possible_paths)
        )

    def _read_raw(self, path: str) -> Dict[str, Any]:
        with open(path, "r", encoding="utf-8") as f:
            if path.endswith(".json"):
                raw_config = json.load(f)
            else:
                raw_config = yaml.safe_load(f)

        if not isinstance(raw_config, dict):
            raise ValueError("Configuration root must be a mapping")
        return raw_config

    def load_config(self) -> Configuration:
        """
        Load configuration from file.

        Returns:
            Configuration object with validated settings.

        Raises:
            ValueError: If configuration is invalid or file cannot be read.
            FileNotFoundError: If configuration file doesn't exist.
        """
        if not os.path.exists(self.config_path):
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            raw_config = self._read_raw(self.config_path)
            raw_config = self._expand_env_vars(raw_config)

            config = self._parse_config(raw_config)
            config.validate()

            self._config = config
            self._last_modified = os.path.getmtime(self.config_path)

            return config

        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {e}")
        except Exception as e:
            raise ValueError(f"Error loading configuration: {e}")

    def _expand_env_vars(self, obj: Any) -> Any:
        """Recursively expand ${VAR_NAME} values from the environment."""
        if isinstance(obj, dict):
            return {key: self._expand_env_vars(value) for key, value in obj.items()}
        elif isinstance(obj, list):
            return [self._expand_env_vars(item) for item in obj]
        elif isinstance(obj, str):
            if obj.startswith("${") and obj.endswith("}"):
                var_name = obj[2:-1]
                env_value = os.getenv(var_name)
                if env_value is None:
                    raise ValueError(f"Environment variable '{var_name}' not found")
                return env_value
            return obj
        else:
            return obj

    @staticmethod
    def _parse_admin_ids(value: Any) -> List[int]:
        if value is None or value == "":
            return []
        if isinstance(value, str):
            # env-expanded values arrive as "1,2,3"
            value = [part for part in value.split(",") if part.strip()]
        if not isinstance(value, list):
            value = [value]
        return [int(item) for item in value]

    def _parse_config(self, raw_config: Dict[str, Any]) -> Configuration:
        """Parse raw configuration dictionary into Configuration object."""
        try:
            telegram_data = raw_config.get("telegram") or {}
            telegram = TelegramConfig(
                bot_token=str(telegram_data.get("bot_token", "")),
                admin_user_ids=self._parse_admin_ids(telegram_data.get("admin_user_ids")),
            )

            source_data = raw_config.get("listing_source") or {}
            source_defaults = ListingSourceConfig(api_token="")
            listing_source = ListingSourceConfig(
                api_token=str(source_data.get("api_token", "")),
                actor_id=source_data.get("actor_id", source_defaults.actor_id),
                base_url=source_data.get("base_url", source_defaults.base_url),
                location_id=source_data.get("location_id", source_defaults.location_id),
                max_items=int(source_data.get("max_items", source_defaults.max_items)),
                timeout=int(source_data.get("timeout", source_defaults.timeout)),
            )

            scheduler_data = raw_config.get("scheduler") or {}
            scheduler = SchedulerConfig(
                interval_seconds=int(scheduler_data.get("interval_seconds", 900)),
                initial_delay_seconds=int(
                    scheduler_data.get("initial_delay_seconds", 900)
                ),
                fetch_timeout_seconds=int(
                    scheduler_data.get("fetch_timeout_seconds", 120)
                ),
            )

            dispatch_data = raw_config.get("dispatch") or {}
            dispatch = DispatchConfig(
                inter_message_delay=float(dispatch_data.get("inter_message_delay", 0.2)),
                max_retries=int(dispatch_data.get("max_retries", 2)),
                retry_delay=float(dispatch_data.get("retry_delay", 1.0)),
            )

            conversation_data = raw_config.get("conversation") or {}
            conversation = ConversationConfig(
                session_ttl_seconds=int(
                    conversation_data.get("session_ttl_seconds", 1800)
                )
            )

            database_data = raw_config.get("database") or {}
            database = DatabaseConfig(
                url=database_data.get("url", DatabaseConfig.url),
                echo=bool(database_data.get("echo", False)),
            )

            logging_data = raw_config.get("logging") or {}
            logging_config = LoggingConfig(
                level=str(logging_data.get("level", "INFO")),
                directory=str(logging_data.get("directory", "logs")),
            )

            return Configuration(
                telegram=telegram,
                listing_source=listing_source,
                scheduler=scheduler,
                dispatch=dispatch,
                conversation=conversation,
                database=database,
                districts=raw_config.get("districts") or list(DEFAULT_DISTRICTS),
                logging=logging_config,
            )

        except KeyError as e:
            raise ValueError(f"Missing required configuration key: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Error parsing configuration: {e}")

    def get_config(self) -> Configuration:
        """
        Get current configuration, loading if necessary.

        Returns:
            Current configuration object.
        """
        if self._config is None:
            return self.load_config()
        return self._config

    def reload_if_changed(self) -> bool:
        """
        Reload configuration if file has been modified.

        Returns:
            True if configuration was reloaded, False otherwise.
        """
        if not os.path.exists(self.config_path):
            return False

        current_modified = os.path.getmtime(self.config_path)

        if self._last_modified is None or current_modified > self._last_modified:
            try:
                self.load_config()
                return True
            except ValueError:
                # keep the current configuration
                return False

        return False
