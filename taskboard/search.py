"""
Incremental fuzzy search over card text.

Each card's text is reduced to a set of padded character trigrams. Queries
are scored with the Dice coefficient against those sets, so partial and
misspelled queries still land near the cards they meant:

    "wrt rep"  →  "Write report"  ranks above  "Write tests"

An inverted index (gram → card ids) keeps queries proportional to the
number of candidate cards, and ``update`` touches one card only.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Set

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\w+", re.UNICODE)


def ngrams(text: str, n: int = 3) -> FrozenSet[str]:
    """Padded character n-grams of every word in ``text``."""
    grams: Set[str] = set()
    pad = " " * (n - 1)
    for word in _WORD_RE.findall(text.casefold()):
        padded = f"{pad}{word}{pad}"
        for i in range(len(padded) - n + 1):
            grams.add(padded[i:i + n])
    return frozenset(grams)


@dataclass(frozen=True)
class SearchEntry:
    """Fuzzy signature for one card."""
    card_id: str
    grams: FrozenSet[str]
    modified_at: Optional[datetime] = None


class SearchIndex:
    """n-gram index keyed by card id."""

    def __init__(self, n: int = 3):
        if n < 1:
            raise ValueError(f"n-gram size must be positive, got {n}")
        self.n = n
        self._entries: Dict[str, SearchEntry] = {}
        self._postings: Dict[str, Set[str]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, card_id: str) -> bool:
        return card_id in self._entries

    def update(self, card_id: str, text: str, modified_at: Optional[datetime] = None) -> None:
        """Recompute one card's signature in place."""
        self._unlink(card_id)
        entry = SearchEntry(card_id, ngrams(text, self.n), modified_at)
        self._entries[card_id] = entry
        for gram in entry.grams:
            self._postings.setdefault(gram, set()).add(card_id)

    def remove(self, card_id: str) -> None:
        self._unlink(card_id)

    def _unlink(self, card_id: str) -> None:
        old = self._entries.pop(card_id, None)
        if old is None:
            return
        for gram in old.grams:
            holders = self._postings.get(gram)
            if holders is not None:
                holders.discard(card_id)
                if not holders:
                    del self._postings[gram]

    def clear(self) -> None:
        self._entries.clear()
        self._postings.clear()

    def rebuild(self, model) -> None:
        """Index every card of a BoardModel from scratch."""
        self.clear()
        for card in model.all_cards():
            self.update(card.card_id, card.searchable_text, card.updated_at)
        logger.debug(f"Search index rebuilt: {len(self._entries)} cards")

    def query(self, text: str, limit: Optional[int] = None) -> List[str]:
        """Card ids by descending similarity; ties go to the most recently modified."""
        query_grams = ngrams(text, self.n)
        if not query_grams:
            return []

        overlap: Dict[str, int] = {}
        for gram in query_grams:
            for card_id in self._postings.get(gram, ()):
                overlap[card_id] = overlap.get(card_id, 0) + 1

        scored = []
        for card_id, shared in overlap.items():
            entry = self._entries[card_id]
            score = 2.0 * shared / (len(query_grams) + len(entry.grams))
            modified = entry.modified_at.timestamp() if entry.modified_at else 0.0
            scored.append((-score, -modified, card_id))
        scored.sort()

        ranked = [card_id for _, _, card_id in scored]
        return ranked[:limit] if limit is not None else ranked

    def score(self, card_id: str, text: str) -> float:
        """Dice similarity between ``text`` and one indexed card."""
        entry = self._entries.get(card_id)
        query_grams = ngrams(text, self.n)
        if entry is None or not query_grams or not entry.grams:
            return 0.0
        return 2.0 * len(query_grams & entry.grams) / (len(query_grams) + len(entry.grams))
