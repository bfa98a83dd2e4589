# smart_insights/source_registry.py
"""
Registered data sources and their connection pools.

One pooled SQLAlchemy engine per database configuration name, created on
first use and reused for as long as it answers a `SELECT 1` ping. Pool
sizing comes from the environment, read when the registry is built:
- SOURCE_POOL_MAX_OPEN (default: 25)
- SOURCE_POOL_MAX_IDLE (default: 5)
- SOURCE_POOL_MAX_LIFETIME seconds (default: 3600)
"""

import os
import threading
from typing import Dict, List, Optional, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine

from smart_insights.config_store import ConfigStore
from smart_insights.connectors.sql_connector import SQLConnector
from smart_insights.errors import InvalidConfigError, SourceConnectionError
from smart_insights.monitoring import logger
from smart_insights.schemas import DatabaseConfig

DEFAULT_POOL_MAX_OPEN = 25
DEFAULT_POOL_MAX_IDLE = 5
DEFAULT_POOL_MAX_LIFETIME = 3600


def build_url(config: DatabaseConfig) -> URL:
    if config.type == "sqlite":
        return URL.create("sqlite", database=config.db_name)
    if not config.host:
        raise InvalidConfigError(f"database configuration '{config.name}' has no host")
    return URL.create(
        "postgresql+psycopg2",
        username=config.username,
        password=config.password,
        host=config.host,
        port=config.port,
        database=config.db_name,
        query={"sslmode": str(config.options.get("ssl_mode", "disable"))},
    )


def _ping(engine: Engine) -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class SourceRegistry:
    def __init__(self, config_store: ConfigStore,
                 max_open: Optional[int] = None,
                 max_idle: Optional[int] = None,
                 max_lifetime: Optional[int] = None):
        # Unset limits are read from the environment when the registry is built
        self.config_store = config_store
        self.max_open = max_open if max_open is not None else _env_int(
            "SOURCE_POOL_MAX_OPEN", DEFAULT_POOL_MAX_OPEN)
        idle = max_idle if max_idle is not None else _env_int(
            "SOURCE_POOL_MAX_IDLE", DEFAULT_POOL_MAX_IDLE)
        self.max_idle = min(idle, self.max_open)
        self.max_lifetime = max_lifetime if max_lifetime is not None else _env_int(
            "SOURCE_POOL_MAX_LIFETIME", DEFAULT_POOL_MAX_LIFETIME)
        # name -> (engine, schema the connector inspects)
        self._pools: Dict[str, Tuple[Engine, Optional[str]]] = {}
        self._lock = threading.Lock()

    def _create_engine(self, config: DatabaseConfig) -> Engine:
        url = build_url(config)
        if config.type == "sqlite":
            return create_engine(url, connect_args={"check_same_thread": False})
        return create_engine(
            url,
            pool_size=self.max_idle,
            max_overflow=self.max_open - self.max_idle,
            pool_recycle=self.max_lifetime,
        )

    def _schema_for(self, config: DatabaseConfig) -> Optional[str]:
        default = "public" if config.type == "postgresql" else None
        return config.options.get("schema", default)

    def resolve(self, name: str) -> SQLConnector:
        """Return a connector for the named source, creating its pool if needed."""
        # One lock around lookup and creation so concurrent first requests
        # for the same name cannot build two pools
        with self._lock:
            cached = self._pools.get(name)
            if cached is not None:
                engine, schema = cached
                try:
                    _ping(engine)
                    return SQLConnector(engine, name=name, schema=schema)
                except Exception as e:
                    logger.warning("Cached source pool failed ping; recreating",
                                   extra={"source": name, "error": str(e)})
                    engine.dispose()
                    del self._pools[name]

            config = self.config_store.load_database_config(name)
            engine = self._create_engine(config)
            try:
                _ping(engine)
            except Exception as e:
                engine.dispose()
                raise SourceConnectionError(f"failed to connect to database '{name}': {e}") from e
            schema = self._schema_for(config)
            self._pools[name] = (engine, schema)
            logger.info("Source pool created", extra={"source": name, "type": config.type})
            return SQLConnector(engine, name=name, schema=schema)

    def cached_names(self) -> List[str]:
        with self._lock:
            return sorted(self._pools)

    def close_all(self) -> None:
        """Dispose every pool. All are attempted; failures are reported together."""
        with self._lock:
            pools, self._pools = self._pools, {}
        errors = []
        for name, (engine, _) in pools.items():
            try:
                engine.dispose()
            except Exception as e:
                errors.append(f"{name}: {e}")
        if errors:
            raise SourceConnectionError("failed to close source pools: " + "; ".join(errors))
