# Container board configuration
# Override defaults via containerboard.yaml or environment variables.

import os
import yaml
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .errors import ConfigError

CONFIG_PATH = Path(os.environ.get("CONTAINERBOARD_CONFIG", "containerboard.yaml"))


@dataclass
class Config:
    """Runtime configuration for the dashboard core and its JSON surface."""

    # Remote system of record (single request/response endpoint)
    endpoint_url: str = ""
    request_timeout: float = 30.0

    # Rate-limit backoff: delay = backoff_base * 2 ** attempt
    backoff_base: float = 1.0
    max_retries: int = 5

    # Table view
    page_size: int = 10
    default_sort_column: str = "created_at"
    default_sort_direction: str = "desc"

    # Records
    container_delimiter: str = ","
    upcoming_overdue_days: int = 3

    # Notification surface (milliseconds per severity)
    notification_durations: Dict[str, int] = field(default_factory=lambda: {
        "success": 3000,
        "info": 3000,
        "warning": 5000,
        "error": 6000,
    })

    # Optional Telegram forwarding
    telegram_token_env: str = "CONTAINERBOARD_TELEGRAM_TOKEN"
    telegram_chat_id: Optional[str] = None
    telegram_forward_severities: List[str] = field(default_factory=lambda: ["error"])

    # JSON surface
    api_key: str = ""
    log_level: str = "INFO"

    def apply_env(self):
        """Let the environment override secrets and the endpoint."""
        self.endpoint_url = os.environ.get("CONTAINERBOARD_ENDPOINT", self.endpoint_url)
        self.api_key = os.environ.get("CONTAINERBOARD_API_KEY", self.api_key)

    def require_endpoint(self) -> str:
        if not self.endpoint_url:
            raise ConfigError(
                "No remote endpoint configured.\n"
                "Set endpoint_url in containerboard.yaml or export CONTAINERBOARD_ENDPOINT=<url>"
            )
        return self.endpoint_url

    def telegram_token(self) -> Optional[str]:
        return os.environ.get(self.telegram_token_env) or None

    def validate(self):
        if self.page_size < 1:
            raise ConfigError(f"page_size must be >= 1, got {self.page_size}")
        if self.max_retries < 1:
            raise ConfigError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.backoff_base < 0:
            raise ConfigError(f"backoff_base must be >= 0, got {self.backoff_base}")
        if self.default_sort_direction not in ("asc", "desc"):
            raise ConfigError("default_sort_direction must be 'asc' or 'desc'")
        if not self.container_delimiter:
            raise ConfigError("container_delimiter must not be empty")

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            with open(cfg_path, "r") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ConfigError(f"{cfg_path}: expected a mapping at top level")
            cfg = cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
        else:
            cfg = cls()
        cfg.apply_env()
        cfg.validate()
        return cfg
