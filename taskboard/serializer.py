"""
Board document encode/decode.

Document layout (format 1), nested boards → lists → cards:

    {
      "format": 1,
      "saved_at": "...",
      "active_board_id": "board-…",
      "boards": [
        {"board_id", "name", "description",
         "lists": [{"list_id", "name", "cards": [<Card.to_dict()>, …]}]}
      ]
    }

Decoding rebuilds the BoardModel and checks every structural invariant, so a
document that loads is always safe to hand to the ActionEngine.
"""
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from .errors import CorruptDocument, ValidationError
from .model import BoardModel
from .schema import Board, Card, CardList, utc_now

FORMAT_VERSION = 1


@dataclass(frozen=True)
class DocumentMeta:
    """Bookkeeping stored next to the boards."""
    saved_at: Optional[datetime] = None


def to_document(model: BoardModel) -> Dict[str, Any]:
    """Serialize the whole collection to a plain dict."""
    boards = []
    for board in model.boards():
        lists = []
        for card_list in model.lists_of(board.board_id):
            lists.append({
                "list_id": card_list.list_id,
                "name": card_list.name,
                "cards": [c.to_dict() for c in model.cards_of(card_list.list_id)],
            })
        boards.append({
            "board_id": board.board_id,
            "name": board.name,
            "description": board.description,
            "lists": lists,
        })
    return {
        "format": FORMAT_VERSION,
        "saved_at": utc_now().isoformat(),
        "active_board_id": model.active_board_id,
        "boards": boards,
    }


def from_document(data: Dict[str, Any]) -> Tuple[BoardModel, DocumentMeta]:
    """Rebuild a BoardModel from a document; raise CorruptDocument if unusable."""
    if not isinstance(data, dict):
        raise CorruptDocument("board document must be a JSON object")
    fmt = data.get("format", FORMAT_VERSION)
    if fmt != FORMAT_VERSION:
        raise CorruptDocument(f"unsupported board document format: {fmt}")

    boards, lists, cards = [], [], []
    try:
        for b in data.get("boards", []):
            list_ids = []
            for l in b.get("lists", []):
                card_ids = []
                for c in l.get("cards", []):
                    card = Card.from_dict(c)
                    cards.append(card)
                    card_ids.append(card.card_id)
                lists.append(CardList(l["list_id"], l["name"], tuple(card_ids)))
                list_ids.append(l["list_id"])
            boards.append(Board(b["board_id"], b["name"], b.get("description", ""), tuple(list_ids)))
        saved_at = data.get("saved_at")
        meta = DocumentMeta(
            saved_at=datetime.fromisoformat(saved_at) if saved_at else None,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise CorruptDocument(f"malformed board document: {e}")

    try:
        model = BoardModel.from_parts(boards, lists, cards, data.get("active_board_id"))
    except ValidationError as e:
        raise CorruptDocument(f"board document breaks invariants: {e}")
    return model, meta


def dumps(model: BoardModel) -> bytes:
    """Serialize to UTF-8 JSON bytes (the unit handed across threads)."""
    return json.dumps(to_document(model), indent=2, ensure_ascii=False).encode("utf-8")


def loads(raw: bytes) -> Tuple[BoardModel, DocumentMeta]:
    try:
        data = json.loads(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptDocument(f"board document is not valid JSON: {e}")
    return from_document(data)
