"""
Settings for the Unibox messaging gateway.

Simple, reliable environment variable configuration for the Meta Graph API,
OAuth, webhooks and the conversation store.
"""

import os
import tomllib
from pathlib import Path

from dotenv import load_dotenv

# Load .env file for local development - look in current working directory
load_dotenv(".env")


def _get_version_from_pyproject() -> str:
    """
    Read version from pyproject.toml file.

    Returns:
        Version string from pyproject.toml, or fallback version
    """
    current_path = Path(__file__)
    for parent in [current_path.parent, *current_path.parents]:
        pyproject_path = parent / "pyproject.toml"
        if pyproject_path.exists():
            try:
                with open(pyproject_path, "rb") as f:
                    pyproject_data = tomllib.load(f)
                    version = pyproject_data.get("project", {}).get("version")
                    if version:
                        return version
            except (OSError, tomllib.TOMLDecodeError):
                continue

    return "0.1.0"


class Settings:
    """Application settings with environment-based configuration."""

    def __init__(self):
        # ================================================================
        # Version & General Configuration
        # ================================================================
        self.version: str = _get_version_from_pyproject()
        self.port: int = int(os.getenv("PORT", "8000"))
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO")
        self.log_dir: str = os.getenv("LOG_DIR", "./logs")
        self.environment: str = os.getenv("ENVIRONMENT", "DEV")
        self.app_url: str = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")

        # ================================================================
        # Graph API Configuration
        # ================================================================
        self.graph_api_version: str = os.getenv("GRAPH_API_VERSION", "v22.0")
        self.graph_base_url: str = os.getenv(
            "GRAPH_BASE_URL", "https://graph.facebook.com/"
        )
        self.graph_max_retries: int = int(os.getenv("GRAPH_MAX_RETRIES", "3"))
        self.graph_retry_delay: float = float(os.getenv("GRAPH_RETRY_DELAY", "1.0"))
        self.graph_timeout: float = float(os.getenv("GRAPH_TIMEOUT", "30"))

        # ================================================================
        # Meta App / OAuth Configuration
        # ================================================================
        self.meta_app_id: str | None = os.getenv("META_APP_ID")
        self.meta_app_secret: str | None = os.getenv("META_APP_SECRET")
        self.meta_webhook_verify_token: str | None = os.getenv(
            "META_WEBHOOK_VERIFY_TOKEN"
        )
        self.oauth_state_ttl: int = int(os.getenv("OAUTH_STATE_TTL", "600"))

        # Operator-supplied WhatsApp identifiers. The "business account" value is
        # frequently a phone-number id in practice; discovery handles both.
        self.whatsapp_business_account_id: str | None = os.getenv(
            "WHATSAPP_BUSINESS_ACCOUNT_ID"
        )
        self.whatsapp_phone_number_id: str | None = os.getenv(
            "WHATSAPP_PHONE_NUMBER_ID"
        )

        # ================================================================
        # Persistence
        # ================================================================
        self.database_url: str = os.getenv(
            "DATABASE_URL", "sqlite+aiosqlite:///./unibox.db"
        )
        self.database_echo: bool = os.getenv("DATABASE_ECHO", "false").lower() in (
            "1",
            "true",
            "yes",
        )

        # ================================================================
        # Demo / Simulation Mode
        # ================================================================
        self.demo_channel: str = os.getenv("DEMO_CHANNEL", "whatsapp").lower()
        self.demo_token_prefix: str = os.getenv("DEMO_TOKEN_PREFIX", "demo_")
        self.demo_step_delay: float = float(os.getenv("DEMO_STEP_DELAY", "2.0"))

        self._validate_settings()

    def _validate_settings(self):
        """Validate settings values."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR"]
        if self.log_level.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        self.log_level = self.log_level.upper()

        valid_environments = ["DEV", "PROD"]
        if self.environment.upper() not in valid_environments:
            self.environment = "DEV"
        self.environment = self.environment.upper()

        if self.graph_max_retries < 0:
            raise ValueError("GRAPH_MAX_RETRIES must be >= 0")

    @property
    def graph_url(self) -> str:
        """Versioned Graph API base URL without trailing slash."""
        return f"{self.graph_base_url.rstrip('/')}/{self.graph_api_version}"

    @property
    def oauth_redirect_uri(self) -> str:
        return f"{self.app_url}/api/meta/callback"

    @property
    def has_meta_app(self) -> bool:
        """Check if the Meta app credentials needed for OAuth are configured."""
        return bool(self.meta_app_id and self.meta_app_secret)

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "DEV"


# Global settings instance
settings = Settings()
