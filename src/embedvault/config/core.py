import logging
import os

from .loader import section

logger = logging.getLogger(__name__)

_PROVIDERS = ("openai", "ollama")
_BACKENDS = ("memory", "sqlite")


class Core:
    def __init__(self, config: dict | None = None) -> None:
        cfg = section(config, "core")

        openai_env = str(cfg.get("openai_key_env", "OPENAI_API_KEY"))
        self.OPENAI_API_KEY: str | None = os.getenv(openai_env)

        self.EMBEDDING_PROVIDER: str = str(
            cfg.get("embedding_provider", os.getenv("EMBEDDING_PROVIDER", "openai"))
        ).lower()
        self.STORE_BACKEND: str = str(cfg.get("store_backend", os.getenv("STORE_BACKEND", "sqlite"))).lower()
        self.SQLITE_PATH: str = str(cfg.get("sqlite_path", os.getenv("SQLITE_PATH", "data/embedvault.db")))
        self.TENANT_ID: str | None = cfg.get("tenant_id") or os.getenv("TENANT_ID")

        if self.EMBEDDING_PROVIDER not in _PROVIDERS:
            logger.warning(
                "Unknown embedding provider %r; expected one of %s", self.EMBEDDING_PROVIDER, _PROVIDERS
            )
        if self.STORE_BACKEND not in _BACKENDS:
            logger.warning("Unknown store backend %r; expected one of %s", self.STORE_BACKEND, _BACKENDS)
