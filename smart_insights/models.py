# smart_insights/models.py
from sqlalchemy import Column, String, DateTime, Text, Boolean
import datetime

from smart_insights.db import Base


def _utcnow():
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class AssistantResponseRecord(Base):
    __tablename__ = "assistant_responses"

    uuid = Column(String(64), primary_key=True)
    question = Column(Text, nullable=False)
    success = Column(Boolean, nullable=False, default=True)
    status = Column(String(32), nullable=False)
    response_json = Column(Text, nullable=False, default="[]")
    created_at = Column(DateTime, default=_utcnow, index=True)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class DatabaseConfigRecord(Base):
    __tablename__ = "database_configs"

    name = Column(String(255), primary_key=True)
    config_json = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_utcnow)


class LLMConfigRecord(Base):
    __tablename__ = "llm_configs"

    provider = Column(String(50), primary_key=True)
    name = Column(String(255), primary_key=True)
    config_json = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_utcnow)
