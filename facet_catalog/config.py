"""
Configuration management for the facet catalog.

Loads settings from a YAML config file, then lets environment variables
(including a local .env file) override connection details.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv

load_dotenv()


def _project_root() -> Path:
    """Return project root (parent of facet_catalog package)."""
    return Path(__file__).resolve().parent.parent


DEFAULT_CONFIG_PATH = _project_root() / "config" / "default.yaml"

# Display names of the storefront filters, in render order.
DEFAULT_FACETS: Dict[str, str] = {
    "category": "Категорії",
    "brend": "Бренд",
    "kolir": "Колір",
    "rozmir-postachalnika": "Розмір постачальника",
    "sklad": "Склад",
    "price": "Ціна",
}


@dataclass
class CatalogConfig:
    """Configuration for the catalog service, index and importer."""

    # Primary store
    database_url: str = "sqlite:///./catalog.db"

    # Facet index store (REDIS_URL wins over host/port/db when set)
    redis_url: Optional[str] = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_socket_timeout: float = 2.0

    # Index key layout
    key_prefix: str = "facet"
    all_products_key: str = "products:all"
    available_products_key: str = "products:available"
    scratch_prefix: str = "tmp"
    scratch_ttl_seconds: int = 3600

    # Pagination
    default_page_size: int = 10
    max_page_size: int = 100

    # Import
    import_chunk_size: int = 100

    facets: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_FACETS))

    @classmethod
    def from_yaml(cls, config_path: Optional[Path] = None) -> "CatalogConfig":
        """Load configuration from YAML file, then apply environment overrides."""
        path = config_path or DEFAULT_CONFIG_PATH
        data = {}
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

        database = data.get("database", {})
        redis_config = data.get("redis", {})
        index_config = data.get("index", {})
        pagination = data.get("pagination", {})
        import_config = data.get("import", {})

        config = cls(
            database_url=database.get("url", cls.database_url),
            redis_url=redis_config.get("url"),
            redis_host=redis_config.get("host", cls.redis_host),
            redis_port=int(redis_config.get("port", cls.redis_port)),
            redis_db=int(redis_config.get("db", cls.redis_db)),
            redis_socket_timeout=float(redis_config.get("socket_timeout", cls.redis_socket_timeout)),
            key_prefix=index_config.get("key_prefix", cls.key_prefix),
            all_products_key=index_config.get("all_products_key", cls.all_products_key),
            available_products_key=index_config.get("available_products_key", cls.available_products_key),
            scratch_prefix=index_config.get("scratch_prefix", cls.scratch_prefix),
            scratch_ttl_seconds=int(index_config.get("scratch_ttl_seconds", cls.scratch_ttl_seconds)),
            default_page_size=int(pagination.get("default_page_size", cls.default_page_size)),
            max_page_size=int(pagination.get("max_page_size", cls.max_page_size)),
            import_chunk_size=int(import_config.get("chunk_size", cls.import_chunk_size)),
            facets=dict(index_config.get("facets") or DEFAULT_FACETS),
        )
        config.apply_env()
        return config

    def apply_env(self) -> None:
        """Override connection settings from environment variables."""
        self.database_url = os.getenv("DATABASE_URL") or self.database_url
        self.redis_url = os.getenv("REDIS_URL") or self.redis_url
        self.redis_host = os.getenv("REDIS_HOST", self.redis_host)
        self.redis_port = int(os.getenv("REDIS_PORT", str(self.redis_port)))
        self.redis_db = int(os.getenv("REDIS_DB", str(self.redis_db)))
        self.key_prefix = os.getenv("FACET_KEY_PREFIX", self.key_prefix)


# Global config instance
_config: Optional[CatalogConfig] = None


def get_config() -> CatalogConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = CatalogConfig.from_yaml()
    return _config


def set_config(config: CatalogConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
