"""In-process conversation state store and persistence protocol."""

from __future__ import annotations

from typing import Protocol

from skill_bridge.orchestrator.models import ConversationState, ConversationStatus


class ConversationStore(Protocol):
    """Store owned by the loop controller."""

    def get(self, conversation_id: str) -> ConversationState | None: ...

    def set(self, state: ConversationState) -> None: ...

    def delete(self, conversation_id: str) -> ConversationState | None: ...

    def list_active(self) -> list[ConversationState]: ...

    def list_all(self) -> list[ConversationState]: ...


class StatePersistence(Protocol):
    """Optional durable collaborator called around each transition."""

    def load_state(self, conversation_id: str) -> ConversationState | None: ...

    def save_state(self, state: ConversationState) -> None: ...

    def delete_state(self, conversation_id: str) -> bool: ...


class InMemoryConversationStore:
    """Dictionary-backed store; state is lost on restart."""

    def __init__(self) -> None:
        self._states: dict[str, ConversationState] = {}

    def get(self, conversation_id: str) -> ConversationState | None:
        return self._states.get(conversation_id)

    def set(self, state: ConversationState) -> None:
        self._states[state.conversation_id] = state

    def delete(self, conversation_id: str) -> ConversationState | None:
        return self._states.pop(conversation_id, None)

    def list_active(self) -> list[ConversationState]:
        return [
            state for state in self._states.values() if state.status is ConversationStatus.ACTIVE
        ]

    def list_all(self) -> list[ConversationState]:
        return list(self._states.values())

    def __len__(self) -> int:
        return len(self._states)
