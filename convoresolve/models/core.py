"""
Core data models for entity resolution and per-thread conversation memory.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class Snapshot:
    """Read-only dataset handed over by the upstream snapshot pipeline.

    ``collections`` maps collection name -> record id -> field mapping.
    The version tag identifies the snapshot for alias index caching: the
    explicit ``version`` when the producer knows it, otherwise the load time.
    """
    collections: Mapping[str, Mapping[str, Mapping[str, Any]]]
    loaded_at: float
    version: Optional[str] = None

    @property
    def version_tag(self) -> str:
        if self.version:
            return f'snap:{self.version}'
        return f'loaded:{self.loaded_at}'


@dataclass(frozen=True)
class EntityRecord:
    """One indexed row of a snapshot collection."""
    id: str
    collection: str
    status: str  # Empty means active
    labels: Tuple[str, ...]  # First element is the canonical display label
    aliases: FrozenSet[str]

    @property
    def label(self) -> str:
        return self.labels[0] if self.labels else self.id


@dataclass(frozen=True)
class AliasIndex:
    """Immutable collection -> records mapping built for one snapshot version."""
    version_tag: str
    built_at: float
    collections: Mapping[str, Tuple[EntityRecord, ...]]

    def records(self, collection: str) -> Optional[Tuple[EntityRecord, ...]]:
        return self.collections.get(collection)

    @property
    def record_count(self) -> int:
        return sum(len(recs) for recs in self.collections.values())


@dataclass(frozen=True)
class Match:
    """A scored candidate produced by one resolution call."""
    id: str
    collection: str
    score: float
    label: str
    matched_alias: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'label': self.label, 'score': self.score}


class ResolveOutcome(str, Enum):
    """How a resolution call ended."""
    MATCH = 'match'
    CLARIFY = 'clarify'
    NO_MATCH = 'no_match'
    ESCALATE = 'escalate'


@dataclass
class ResolveResult:
    """Result of resolving free text against one collection."""
    query: str
    collection: str
    outcome: ResolveOutcome
    match: Optional[Match] = None
    candidates: List[Match] = field(default_factory=list)
    version_tag: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'match': self.match.to_dict() if self.match else None,
            'candidates': [c.to_dict() for c in self.candidates],
        }


@dataclass(frozen=True)
class Candidate:
    """An entry of a pending disambiguation list."""
    id: str
    name: str
    score: float = 0.0


@dataclass(frozen=True)
class PendingDisambiguation:
    """Candidates the user was asked to choose from."""
    kind: str  # Collection the candidates belong to
    query: str
    candidates: Tuple[Candidate, ...]
    original_text: str
    created_at: float


@dataclass(frozen=True)
class Continuation:
    """Saved pagination state; ``lines`` holds the whole result set."""
    title: str
    lines: Tuple[str, ...]
    offset: int
    page_size: int
    kind: str = 'page'

    @property
    def remaining(self) -> int:
        return max(0, len(self.lines) - self.offset)


@dataclass(frozen=True)
class LastList:
    """Ordered items most recently shown to the user."""
    kind: str
    items: Tuple[Candidate, ...]
    created_at: float


@dataclass(frozen=True)
class LastSelection:
    """Entity most recently picked or matched in the thread."""
    kind: str
    item: Candidate
    created_at: float


@dataclass
class ThreadBucket:
    """Conversation memory root for one thread."""
    updated_at: float
    last_list: Optional[LastList] = None
    last_selection: Optional[LastSelection] = None
    pending: Optional[PendingDisambiguation] = None
    continuation: Optional[Continuation] = None


@dataclass
class FollowupResult:
    """Result of interpreting an utterance against thread state.

    ``handled=False`` means the caller should fall through to normal resolution.
    """
    handled: bool
    answer: Optional[str] = None
    resolved_id: Optional[str] = None


@dataclass
class PagingResult:
    """Result of a paging command against the saved continuation."""
    handled: bool
    answer: Optional[str] = None
    done: bool = False


@dataclass
class EscalationDecision:
    """Validated answer from the escalation collaborator."""
    action: str  # retry | clarify | no_match
    match: Optional[str] = None
    ask: Optional[str] = None
    options: List[str] = field(default_factory=list)
    confidence: str = 'low'


@dataclass(frozen=True)
class HandlerRequest:
    """What a downstream domain handler receives once an entity is known."""
    thread_id: str
    collection: str
    entity_id: Optional[str]
    label: Optional[str]
    original_text: str
    refinement: Optional[str] = None
