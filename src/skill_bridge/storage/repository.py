"""Conversation state repository backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from pathlib import Path

from sqlmodel import Session, SQLModel, col, select

from skill_bridge.orchestrator.models import (
    ConversationState,
    ConversationStatus,
    ExecutionRecord,
)
from skill_bridge.storage.common import (
    SqlitePolicy,
    build_sqlite_engine,
    to_naive_utc,
    to_utc_aware,
)
from skill_bridge.storage.sqlmodel_models import ConversationRow


class SqlConversationRepository:
    """Persistence collaborator that snapshots conversation state to SQLite."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path, SqlitePolicy(busy_timeout_ms=busy_timeout_ms))

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Create tables if they do not exist yet."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        table = ConversationRow.__table__  # type: ignore[attr-defined]
        SQLModel.metadata.create_all(self.engine, tables=[table])

    def load_state(self, conversation_id: str) -> ConversationState | None:
        with Session(self.engine) as session:
            row = session.get(ConversationRow, conversation_id)
            if row is None:
                return None
            return _to_state(row)

    def save_state(self, state: ConversationState) -> None:
        with Session(self.engine) as session:
            row = session.get(ConversationRow, state.conversation_id)
            if row is None:
                row = ConversationRow(
                    conversation_id=state.conversation_id,
                    chat_id=state.chat_id,
                    status=state.status.value,
                    started_at=to_naive_utc(state.started_at),
                    last_summary_at=to_naive_utc(state.last_summary_at),
                    last_activity_at=to_naive_utc(state.last_activity_at),
                )
            row.chat_id = state.chat_id
            row.sender_id = state.sender_id
            row.message = state.message
            row.status = state.status.value
            row.loop_depth = state.loop_depth
            row.last_phase = state.last_phase
            row.started_at = to_naive_utc(state.started_at)
            row.last_summary_at = to_naive_utc(state.last_summary_at)
            row.last_activity_at = to_naive_utc(state.last_activity_at)
            row.history_json = json.dumps(
                [record.to_dict() for record in state.history],
                ensure_ascii=False,
            )
            session.add(row)
            session.commit()

    def delete_state(self, conversation_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(ConversationRow, conversation_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def list_states(
        self,
        *,
        status: ConversationStatus | None = None,
        limit: int | None = None,
    ) -> list[ConversationState]:
        with Session(self.engine) as session:
            query = select(ConversationRow).order_by(col(ConversationRow.last_activity_at).desc())
            if status is not None:
                query = query.where(ConversationRow.status == status.value)
            if limit is not None:
                query = query.limit(limit)
            return [_to_state(row) for row in session.exec(query).all()]

    def __enter__(self) -> SqlConversationRepository:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _to_state(row: ConversationRow) -> ConversationState:
    history_raw = json.loads(row.history_json or "[]")
    return ConversationState(
        conversation_id=row.conversation_id,
        chat_id=row.chat_id,
        sender_id=row.sender_id,
        message=row.message,
        started_at=to_utc_aware(row.started_at),
        last_summary_at=to_utc_aware(row.last_summary_at),
        last_activity_at=to_utc_aware(row.last_activity_at),
        loop_depth=row.loop_depth,
        last_phase=row.last_phase,
        status=ConversationStatus(row.status),
        history=[ExecutionRecord.from_dict(item) for item in history_raw],
    )
