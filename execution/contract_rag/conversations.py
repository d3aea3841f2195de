"""
Conversation storage.

Conversations live in one JSON file. Turns are appended, never edited; only
the newest 50 conversations (by last update) are retained.
"""

import os
import json
import time
import secrets
import logging
import threading
from pathlib import Path
from datetime import datetime, timezone
from dataclasses import dataclass, field, asdict
from typing import Optional

from .storage import atomic_write_json

logger = logging.getLogger(__name__)


def generate_conversation_id() -> str:
    return f"conv_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


@dataclass
class ConversationTurn:
    timestamp: str
    query: str
    answer: str
    source_count: int
    query_type: str = "general"
    confidence: dict = field(default_factory=dict)


@dataclass
class Conversation:
    id: str
    persona_id: str
    created_at: str
    updated_at: str
    turns: list[ConversationTurn] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Conversation":
        return cls(
            id=data["id"],
            persona_id=data.get("persona_id", "legal_advisor"),
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            turns=[ConversationTurn(**t) for t in data.get("turns", [])],
        )

    def summary(self) -> dict:
        return {
            "id": self.id,
            "persona_id": self.persona_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "message_count": len(self.turns),
            "last_query": self.turns[-1].query[:100] if self.turns else "",
        }


class ConversationStore:
    """JSON-file conversation log, newest ``max_conversations`` kept."""

    def __init__(self, path, max_conversations: int = 50):
        self.path = Path(path)
        self.max_conversations = max_conversations
        self._lock = threading.Lock()

    def _load(self) -> dict:
        """Read the log; an unreadable file is moved aside and treated as empty."""
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except ValueError as e:
            self._move_aside(e)
            return {}
        if not isinstance(data, dict):
            self._move_aside("not a JSON object")
            return {}
        return data

    def _move_aside(self, reason) -> None:
        aside = self.path.with_name(self.path.name + ".corrupt")
        logger.error(f"Conversation log {self.path} is unreadable ({reason}); moved to {aside}")
        os.replace(self.path, aside)

    def append_turn(
        self,
        conversation_id: str,
        turn: ConversationTurn,
        persona_id: str = "legal_advisor",
    ) -> Conversation:
        with self._lock:
            data = self._load()
            now = datetime.now(timezone.utc).isoformat()

            if conversation_id in data:
                conversation = Conversation.from_dict(data[conversation_id])
            else:
                conversation = Conversation(
                    id=conversation_id, persona_id=persona_id, created_at=now, updated_at=now,
                )

            conversation.turns.append(turn)
            conversation.updated_at = now
            data[conversation_id] = conversation.to_dict()

            if len(data) > self.max_conversations:
                newest = sorted(data.values(), key=lambda c: c["updated_at"], reverse=True)
                evicted = [c["id"] for c in newest[self.max_conversations:]]
                for cid in evicted:
                    del data[cid]
                logger.info(f"Evicted {len(evicted)} old conversations")

            atomic_write_json(self.path, data)
            return conversation

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            data = self._load().get(conversation_id)
        return Conversation.from_dict(data) if data else None

    def get_history(self, conversation_id: str, max_messages: int = 8) -> list[dict]:
        """Recent turns as chat messages (user, assistant, ...), newest last."""
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            return []

        messages = []
        for turn in conversation.turns:
            messages.append({"role": "user", "content": turn.query})
            messages.append({"role": "assistant", "content": turn.answer})
        return messages[-max_messages:] if max_messages > 0 else []

    def list_conversations(self) -> list[dict]:
        with self._lock:
            data = self._load()
        conversations = [Conversation.from_dict(c) for c in data.values()]
        conversations.sort(key=lambda c: c.updated_at, reverse=True)
        return [c.summary() for c in conversations]

    def delete_conversation(self, conversation_id: str) -> bool:
        with self._lock:
            data = self._load()
            if conversation_id not in data:
                return False
            del data[conversation_id]
            atomic_write_json(self.path, data)
            return True

    def clear_conversations(self) -> None:
        with self._lock:
            atomic_write_json(self.path, {})
