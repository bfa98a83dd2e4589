# smart_insights/response_log.py
"""
Append-only progress log for assistant requests, polled by clients.

Each mutation loads the full response record, modifies it and stores it back
while holding one store-wide lock, so concurrent appends (from the same or
different orchestrations) can never interleave into a corrupted update list.
Records are persisted as JSON through SQLAlchemy.
"""

import datetime
import json
import threading
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from smart_insights import db as dbmod
from smart_insights.errors import ResponseClosedError, ResponseNotFoundError
from smart_insights.models import AssistantResponseRecord
from smart_insights.schemas import (
    AssistantResponse,
    STATUS_IN_PROGRESS,
    STEP_OUTPUT,
    TERMINAL_STATUSES,
    Update,
)

INITIAL_UPDATE_TEXT = "Processing your request..."


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _to_model(rec: AssistantResponseRecord) -> AssistantResponse:
    return AssistantResponse(
        uuid=rec.uuid,
        question=rec.question,
        success=rec.success,
        status=rec.status,
        response=[Update.model_validate(u) for u in json.loads(rec.response_json or "[]")],
    )


class ResponseLog:
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory or dbmod.get_session
        self._lock = threading.Lock()

    def _load(self, session: Session, response_id: str) -> AssistantResponseRecord:
        rec = session.get(AssistantResponseRecord, response_id)
        if rec is None:
            raise ResponseNotFoundError(response_id)
        return rec

    def create(self, response_id: str, question: str) -> AssistantResponse:
        """Register a new in-progress response and return its snapshot."""
        with self._lock, self._session_factory() as session:
            first = Update(text=INITIAL_UPDATE_TEXT, timestamp=_now(), type=STEP_OUTPUT)
            rec = AssistantResponseRecord(
                uuid=response_id,
                question=question,
                success=True,
                status=STATUS_IN_PROGRESS,
                response_json=json.dumps([first.model_dump(mode="json")]),
            )
            session.add(rec)
            session.commit()
            return _to_model(rec)

    def append_update(self, response_id: str, update_type: str, text: str) -> Update:
        with self._lock, self._session_factory() as session:
            # Stamped under the lock so timestamps follow append order
            update = Update(text=text, timestamp=_now(), type=update_type)
            rec = self._load(session, response_id)
            if rec.status in TERMINAL_STATUSES:
                raise ResponseClosedError(
                    f"response '{response_id}' is already {rec.status}; updates are closed"
                )
            updates = json.loads(rec.response_json or "[]")
            updates.append(update.model_dump(mode="json"))
            rec.response_json = json.dumps(updates)
            session.commit()
        return update

    def set_status(self, response_id: str, status: str, success: bool) -> None:
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"status can only move to one of {TERMINAL_STATUSES}, got '{status}'")
        with self._lock, self._session_factory() as session:
            rec = self._load(session, response_id)
            if rec.status in TERMINAL_STATUSES:
                raise ResponseClosedError(
                    f"response '{response_id}' is already {rec.status}; cannot move to {status}"
                )
            rec.status = status
            rec.success = success
            session.commit()

    def get(self, response_id: str) -> AssistantResponse:
        with self._lock, self._session_factory() as session:
            return _to_model(self._load(session, response_id))

    def list_all(self) -> List[AssistantResponse]:
        with self._lock, self._session_factory() as session:
            rows = session.query(AssistantResponseRecord).order_by(AssistantResponseRecord.created_at).all()
            return [_to_model(r) for r in rows]
