"""
Board data model.

    Board → CardList → Card

Entities are immutable values. The BoardModel swaps in a new value on every
mutation, so a copy of the collection never shares mutable state with the
live board.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional, Tuple, FrozenSet, Dict, Any
import uuid


def utc_now() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def new_id(kind: str) -> str:
    """Generate a never-reused identifier such as ``card-3f2a…``."""
    return f"{kind}-{uuid.uuid4().hex}"


def _parse_datetime(value: Optional[str]) -> datetime:
    if not value:
        return utc_now()
    return datetime.fromisoformat(value)


class Priority(Enum):
    """Card priority."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_str(cls, value: str) -> "Priority":
        try:
            return cls[value.upper()]
        except KeyError:
            raise ValueError(f"unknown priority: {value!r}")


class CardStatus(Enum):
    """Card lifecycle status."""
    ACTIVE = "active"
    COMPLETE = "complete"
    STALE = "stale"

    @classmethod
    def from_str(cls, value: str) -> "CardStatus":
        try:
            return cls[value.upper()]
        except KeyError:
            raise ValueError(f"unknown card status: {value!r}")


@dataclass(frozen=True)
class Comment:
    """One comment on a card."""
    text: str
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "created_at": self.created_at.isoformat()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Comment":
        return cls(text=data.get("text", ""), created_at=_parse_datetime(data.get("created_at")))


@dataclass(frozen=True)
class Card:
    """A single work item."""

    card_id: str
    title: str
    description: str = ""
    tags: FrozenSet[str] = frozenset()
    due_date: Optional[date] = None
    priority: Priority = Priority.LOW
    status: CardStatus = CardStatus.ACTIVE
    comments: Tuple[Comment, ...] = ()
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def new(cls, title: str, **fields) -> "Card":
        """Build a card with a fresh identifier."""
        now = utc_now()
        fields.setdefault("created_at", now)
        fields.setdefault("updated_at", now)
        return cls(card_id=new_id("card"), title=title, **fields)

    @property
    def searchable_text(self) -> str:
        return f"{self.title} {self.description}".strip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "card_id": self.card_id,
            "title": self.title,
            "description": self.description,
            "tags": sorted(self.tags),
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "priority": self.priority.value,
            "status": self.status.value,
            "comments": [c.to_dict() for c in self.comments],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Card":
        """Deserialize from dict."""
        return cls(
            card_id=data["card_id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            tags=frozenset(data.get("tags", [])),
            due_date=date.fromisoformat(data["due_date"]) if data.get("due_date") else None,
            priority=Priority.from_str(data.get("priority", "low")),
            status=CardStatus.from_str(data.get("status", "active")),
            comments=tuple(Comment.from_dict(c) for c in data.get("comments", [])),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass(frozen=True)
class CardList:
    """An ordered column of cards."""
    list_id: str
    name: str
    card_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Board:
    """Top-level container of lists."""
    board_id: str
    name: str
    description: str = ""
    list_ids: Tuple[str, ...] = ()
