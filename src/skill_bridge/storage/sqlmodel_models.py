"""SQLModel ORM tables for conversation persistence."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class ConversationRow(SQLModel, table=True):
    __tablename__ = "conversations"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_conversations_status_activity", "status", "last_activity_at"),)

    conversation_id: str = Field(primary_key=True)
    chat_id: str = Field(index=True)
    sender_id: str = Field(default="unknown")
    message: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    status: str = Field(index=True)
    loop_depth: int = Field(default=0)
    last_phase: str | None = Field(default=None, sa_column=Column(Text))
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    last_summary_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    last_activity_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    history_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
