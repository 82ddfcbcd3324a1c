# models.py
"""
Records
-------
Shared records for the card search engine: the normalized Document, the
normalizer output and the built Corpus.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Set, Tuple


@dataclass
class Document:
    """A normalized card. `tags` is ordered and duplicate-free."""

    id: str
    name: str = ""
    creator_name: str = ""
    tags: Tuple[str, ...] = ()
    description_text: str = ""
    creator_notes_text: str = ""
    favorite: bool = False
    date_added: float = 0.0
    date_last_interaction: float = 0.0
    interaction_volume: float = 0.0
    storage_size: float = 0.0
    asset: Optional[str] = None
    tag_count: int = 0
    rarity_sum: float = 0.0
    inferred_tags: FrozenSet[str] = frozenset()
    raw: Optional[dict] = field(default=None, repr=False, compare=False)
    tag_set: FrozenSet[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        self.tags = tuple(self.tags)
        self.inferred_tags = frozenset(self.inferred_tags)
        self.tag_set = frozenset(self.tags)

    def has_tag(self, tag: str) -> bool:
        return tag in self.tag_set

    @property
    def text(self) -> str:
        """Notes and description as one plain-text surface."""
        return (self.creator_notes_text or "") + " " + (self.description_text or "")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "creator_name": self.creator_name,
            "tags": list(self.tags),
            "inferred_tags": sorted(self.inferred_tags),
            "description_text": self.description_text,
            "creator_notes_text": self.creator_notes_text,
            "favorite": self.favorite,
            "date_added": self.date_added,
            "date_last_interaction": self.date_last_interaction,
            "interaction_volume": self.interaction_volume,
            "storage_size": self.storage_size,
            "asset": self.asset,
            "tag_count": self.tag_count,
            "rarity_sum": round(self.rarity_sum, 6),
        }


@dataclass
class NormalizedPayload:
    documents: List[Document]
    by_id: Dict[str, Document]
    tag_universe: List[str]
    asset_tags: Dict[str, List[str]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)


@dataclass
class Corpus:
    """Everything built from one payload. Read-only once published."""

    documents: List[Document]
    by_id: Dict[str, Document]
    tag_universe: List[str]
    tag_frequency: Dict[str, int]
    tag_to_ids: Dict[str, Set[str]]
    idf: Dict[str, float]
    token_index: object
    asset_tags: Dict[str, List[str]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    text_index: Optional[object] = None

    def __len__(self):
        return len(self.documents)

    def get(self, doc_id) -> Optional[Document]:
        return self.by_id.get(doc_id)
