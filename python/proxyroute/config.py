"""
Runtime settings for proxyroute.

Values come from the environment (a local .env file is loaded first).
"""

from dataclasses import dataclass
from typing import Optional
import os

from dotenv import load_dotenv

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class Settings:
    """
    Attributes:
        config_path: JSON proxy list file (default: proxies.json)
        log_level: logging level name (default: INFO)
        cache_size: compiled pattern cache capacity, 0 disables caching
        api_port: resolve API port, 0 picks a free port
        proxy_port: mitmproxy listen port
    """
    config_path: str = "proxies.json"
    log_level: str = "INFO"
    cache_size: int = 256
    api_port: int = 0
    proxy_port: int = 8080

    def __post_init__(self):
        self.log_level = self.log_level.upper()
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {self.log_level}")
        if self.cache_size < 0:
            raise ValueError("cache_size must be >= 0")
        for name in ("api_port", "proxy_port"):
            port = getattr(self, name)
            if not 0 <= port <= 65535:
                raise ValueError(f"{name} out of range: {port}")

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        """Create settings from environment variables."""
        load_dotenv(dotenv_path)
        return cls(
            config_path=os.getenv("PROXYROUTE_CONFIG", "proxies.json"),
            log_level=os.getenv("PROXYROUTE_LOG_LEVEL", "INFO"),
            cache_size=int(os.getenv("PROXYROUTE_CACHE_SIZE", "256")),
            api_port=int(os.getenv("PROXYROUTE_API_PORT", "0")),
            proxy_port=int(os.getenv("PROXYROUTE_PROXY_PORT", "8080")),
        )


__all__ = ["Settings"]
