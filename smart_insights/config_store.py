# smart_insights/config_store.py
"""
Saved data-source and LLM configurations.

The orchestration path only reads from here (load_database_config /
load_llm_config). Saving, listing and deleting exist so the service can be
bootstrapped, either from code or from a JSON seed file:

    {
      "databases": [{"name": "sales_db", "type": "postgresql", ...}],
      "llm": [{"name": "default", "type": "openai", "api_key": "...", "model": "gpt-4o-mini"}]
    }
"""

import json
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from smart_insights import db as dbmod
from smart_insights.errors import ConfigExistsError, ConfigNotFoundError, InvalidConfigError
from smart_insights.models import DatabaseConfigRecord, LLMConfigRecord
from smart_insights.monitoring import logger
from smart_insights.schemas import DatabaseConfig, LLMConfig


class ConfigStore:
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory or dbmod.get_session

    # --- database configurations
    def save_database_config(self, config: DatabaseConfig) -> None:
        with self._session_factory() as session:
            session.add(DatabaseConfigRecord(name=config.name, config_json=config.model_dump_json()))
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise ConfigExistsError(f"database configuration '{config.name}' already exists") from e

    def load_database_config(self, name: str) -> DatabaseConfig:
        with self._session_factory() as session:
            rec = session.get(DatabaseConfigRecord, name)
            if rec is None:
                raise ConfigNotFoundError(f"database configuration '{name}' not found")
            raw = rec.config_json
        try:
            return DatabaseConfig.model_validate_json(raw)
        except ValidationError as e:
            raise InvalidConfigError(f"stored database configuration '{name}' is malformed: {e}") from e

    def list_database_configs(self) -> List[DatabaseConfig]:
        with self._session_factory() as session:
            rows = session.query(DatabaseConfigRecord).order_by(DatabaseConfigRecord.name).all()
            return [DatabaseConfig.model_validate_json(r.config_json) for r in rows]

    def delete_database_config(self, name: str) -> None:
        with self._session_factory() as session:
            rec = session.get(DatabaseConfigRecord, name)
            if rec is None:
                raise ConfigNotFoundError(f"database configuration '{name}' not found")
            session.delete(rec)
            session.commit()

    # --- LLM configurations (keyed by provider kind + name)
    def save_llm_config(self, config: LLMConfig) -> None:
        with self._session_factory() as session:
            session.add(LLMConfigRecord(provider=config.type, name=config.name,
                                        config_json=config.model_dump_json()))
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise ConfigExistsError(
                    f"LLM configuration '{config.name}' already exists for provider '{config.type}'"
                ) from e

    def load_llm_config(self, provider: str, name: str) -> LLMConfig:
        with self._session_factory() as session:
            rec = session.get(LLMConfigRecord, (provider, name))
            if rec is None:
                raise ConfigNotFoundError(
                    f"LLM configuration '{name}' not found for provider '{provider}'"
                )
            raw = rec.config_json
        try:
            return LLMConfig.model_validate_json(raw)
        except ValidationError as e:
            raise InvalidConfigError(f"stored LLM configuration '{name}' is malformed: {e}") from e

    def list_llm_configs(self, provider: str) -> List[LLMConfig]:
        with self._session_factory() as session:
            rows = (
                session.query(LLMConfigRecord)
                .filter(LLMConfigRecord.provider == provider)
                .order_by(LLMConfigRecord.name)
                .all()
            )
            return [LLMConfig.model_validate_json(r.config_json) for r in rows]

    def delete_llm_config(self, provider: str, name: str) -> None:
        with self._session_factory() as session:
            rec = session.get(LLMConfigRecord, (provider, name))
            if rec is None:
                raise ConfigNotFoundError(
                    f"LLM configuration '{name}' not found for provider '{provider}'"
                )
            session.delete(rec)
            session.commit()

    # --- bootstrap
    def seed_from_file(self, path: str) -> Dict[str, int]:
        """
        Load configurations from a JSON file. Entries that already exist are
        skipped, so the seed can be applied on every start.
        Returns counts of newly saved entries.
        """
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)

        saved = {"databases": 0, "llm": 0}
        for raw in payload.get("databases", []):
            try:
                self.save_database_config(DatabaseConfig.model_validate(raw))
                saved["databases"] += 1
            except ConfigExistsError:
                logger.info("Database config already present, skipping", extra={"config": raw.get("name")})
        for raw in payload.get("llm", []):
            try:
                self.save_llm_config(LLMConfig.model_validate(raw))
                saved["llm"] += 1
            except ConfigExistsError:
                logger.info("LLM config already present, skipping", extra={"config": raw.get("name")})
        return saved
