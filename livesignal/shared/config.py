"""
Layered environment configuration.

Later sources override earlier ones:
1) `env.example` (committed, safe placeholders)
2) `env.local` (optional, never committed)
3) Process environment
"""

import os
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from loguru import logger

ROOT = Path(__file__).parent.parent.parent

DEFAULT_MONGO_URL = "mongodb://localhost:27017"


def _bounded_int(raw: Any, name: str, default: int, upper: int | None = None) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid {} value '{}', defaulting to {}", name, raw, default)
        return default
    if value <= 0 or (upper is not None and value > upper):
        logger.warning("{} value {} is out of range, defaulting to {}", name, value, default)
        return default
    return value


class EnvironConfig:
    """Process-wide mapping of configuration values, loaded once."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._values = {}
            cls._instance._load()
        return cls._instance

    def _load(self):
        for name in ("env.example", "env.local"):
            path = ROOT / name
            if path.exists():
                self._values.update({k: v for k, v in dotenv_values(path).items() if v is not None})
                logger.info("Loaded environment variables from {}", path)
        self._values.update(os.environ)

    def reload(self):
        self._values.clear()
        self._load()
        logger.info("Configuration reloaded")

    def __getitem__(self, key: str) -> str:
        if key not in self._values:
            raise KeyError(f"Configuration key '{key}' not found")
        return self._values[key]

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def items(self):
        return self._values.items()

    def mongo_url(self, label: str = "default") -> str | None:
        """
        Connection string for a Mongo label, from `MONGO_URL_<LABEL>`.

        The default label also accepts `MONGO_URL` and falls back to a
        local server.
        """
        url = self.get(f"MONGO_URL_{label.upper()}")
        if url:
            return url
        if label == "default":
            return self.get("MONGO_URL") or DEFAULT_MONGO_URL
        return None

    def mongo_client_options(self) -> dict[str, int]:
        """Motor client keyword arguments; timeouts are in milliseconds."""
        return {
            "maxPoolSize": _bounded_int(self.get("MONGO_MAX_POOL_SIZE", 5), "MONGO_MAX_POOL_SIZE", 5, upper=100),
            "serverSelectionTimeoutMS": _bounded_int(
                self.get("MONGO_SERVER_SELECTION_TIMEOUT", 30000), "MONGO_SERVER_SELECTION_TIMEOUT", 30000
            ),
            "connectTimeoutMS": _bounded_int(
                self.get("MONGO_CONNECT_TIMEOUT", 30000), "MONGO_CONNECT_TIMEOUT", 30000
            ),
            "socketTimeoutMS": _bounded_int(
                self.get("MONGO_SOCKET_TIMEOUT", 300000), "MONGO_SOCKET_TIMEOUT", 300000
            ),
        }


config = EnvironConfig()
