from dotenv import load_dotenv
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
import os

load_dotenv()  # Loads variables from .env file


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    """
    Manages application settings loaded from environment variables.
    """
    PSI_API_KEY = os.getenv("PSI_API_KEY")
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///speedsnapshot.db")  # Default to SQLite

    # Database backend configuration
    DB_BACKEND = os.getenv("DB_BACKEND", "local")  # 'local' or 'turso'
    TURSO_DATABASE_URL = os.getenv("TURSO_DATABASE_URL")  # e.g., libsql://your-db.turso.io
    TURSO_AUTH_TOKEN = os.getenv("TURSO_AUTH_TOKEN")

    # Transport fallbacks
    PSI_PROXY_ENDPOINTS = _split_list(
        os.getenv("PSI_PROXY_ENDPOINTS", "http://localhost:8000/psi-proxy")
    )
    PSI_CLIENT_PROXY_URL = os.getenv("PSI_CLIENT_PROXY_URL")

    # Query parameter that turns the optimization off for the baseline run
    BASELINE_QUERY_PARAM = os.getenv("BASELINE_QUERY_PARAM", "nonitro")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()


@dataclass
class Config:
    """Runtime configuration for a comparison run."""
    psi_api_key: Optional[str] = None
    psi_locale: str = "en"
    proxy_endpoints: List[str] = field(
        default_factory=lambda: ["http://localhost:8000/psi-proxy"]
    )
    client_proxy_url: Optional[str] = None
    baseline_param: str = "nonitro"
    log_level: str = "INFO"

    # Bulk orchestration
    max_bulk_urls: int = 6
    stagger_seconds: float = 2.0  # Job i starts after i * stagger_seconds
    safe_mode_base_delay: float = 20.0  # Wait before the first safe-mode job
    safe_mode_delay_step: float = 10.0  # Added per subsequent safe-mode job

    # Smart fetch escalation
    rate_limit_cooldown: float = 5.0
    ultra_safe_delays: Tuple[float, ...] = (20.0, 30.0, 40.0)
    ultra_safe_ceiling: float = 600.0  # Hard cap on the whole ultra-safe pass

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables.

        Returns:
            Config: Configuration instance with values from environment
        """
        return cls(
            psi_api_key=os.getenv("PSI_API_KEY"),
            psi_locale=os.getenv("PSI_LOCALE", "en"),
            proxy_endpoints=_split_list(
                os.getenv("PSI_PROXY_ENDPOINTS", "http://localhost:8000/psi-proxy")
            ),
            client_proxy_url=os.getenv("PSI_CLIENT_PROXY_URL"),
            baseline_param=os.getenv("BASELINE_QUERY_PARAM", "nonitro"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            max_bulk_urls=int(os.getenv("MAX_BULK_URLS", "6")),
            stagger_seconds=float(os.getenv("BULK_STAGGER_SECONDS", "2.0")),
            safe_mode_base_delay=float(os.getenv("SAFE_MODE_BASE_DELAY", "20.0")),
            safe_mode_delay_step=float(os.getenv("SAFE_MODE_DELAY_STEP", "10.0")),
            rate_limit_cooldown=float(os.getenv("RATE_LIMIT_COOLDOWN", "5.0")),
            ultra_safe_ceiling=float(os.getenv("ULTRA_SAFE_CEILING", "600.0")),
        )
