"""
Resolver: scores free text against a candidate pool and applies the confidence policy.

Two candidate pools are supported:

- fuzzy mode, against every record of a collection in the alias index;
- index-assisted mode, against a bounded pull from a backing store using
  broadened LIKE patterns, for collections queried live.
"""

import sqlite3
from typing import List, Optional, Protocol, Sequence, Tuple

from ..models.core import AliasIndex, Match, ResolveOutcome, ResolveResult
from ..models.errors import IndexUnavailable, MissingQuery, UnknownCollection
from ..utils.config import ResolverConfig
from ..utils.config import config as default_config
from ..utils.logging_config import get_logger
from ..utils.normalize import normalize, tokens
from ..utils.scoring import best_alias_score, score
from .alias_index import is_active_status
from .collection_registry import CollectionRegistry, CollectionSpec

logger = get_logger(__name__)

_EPSILON = 1e-9


def sort_matches(matches: List[Match], query: Optional[str] = None) -> List[Match]:
    """Descending score, ties broken by label then id.

    With ``query`` given, a record whose display label equals it outranks
    others of the same score, so "raymond" prefers Raymond to Raymond South.
    """
    wanted = normalize(query) if query else None

    def key(m: Match):
        return (-m.score, wanted is None or normalize(m.label) != wanted, m.label.lower(), m.label, m.id)

    return sorted(matches, key=key)


def apply_confidence_policy(ranked: Sequence[Match], policy: ResolverConfig,
                            limit: int) -> Tuple[Optional[Match], List[Match]]:
    """Decide between a confident match and a "did you mean" list.

    Accept the top candidate when it scores at least ``high_threshold``, or at
    least ``medium_threshold`` while leading the runner-up by ``min_margin``.
    Equal scores keep the order of ``ranked``. Otherwise return up to
    ``limit`` candidates, or none when nothing scored above zero.
    """
    scored = [m for m in ranked if m.score > 0]
    if not scored:
        return None, []

    best = scored[0]
    runner_up = scored[1].score if len(scored) > 1 else 0.0
    if best.score >= policy.high_threshold - _EPSILON:
        return best, []
    if best.score >= policy.medium_threshold - _EPSILON and (best.score - runner_up) >= policy.min_margin - _EPSILON:
        return best, []

    return None, list(scored[:limit])


def build_like_patterns(query: str, max_tokens: int = 8) -> List[str]:
    """Broadened LIKE patterns for pulling store candidates.

    The whole normalized query with spaces as wildcards, its first two tokens
    joined by a wildcard, then each token of two or more characters.
    """
    normalized = normalize(query)
    if not normalized:
        return []

    toks = tokens(query)
    patterns = [f'%{normalized.replace(" ", "%")}%']
    if len(toks) >= 2:
        patterns.append(f'%{toks[0]}%{toks[1]}%')
    patterns.extend(f'%{tok}%' for tok in toks[:max_tokens] if len(tok) >= 2)

    seen = set()
    unique = []
    for pattern in patterns:
        if pattern not in seen:
            seen.add(pattern)
            unique.append(pattern)
    return unique


class CandidateStore(Protocol):
    """Backing store that can return (id, name) rows matching LIKE patterns."""

    def fetch_candidates(self, spec: CollectionSpec, patterns: Sequence[str], limit: int) -> List[Tuple[str, str]]:
        ...


class SqliteCandidateStore:
    """Candidate pulls from a SQLite database laid out per the collection registry."""

    def __init__(self, connection: sqlite3.Connection):
        self.connection = connection

    def fetch_candidates(self, spec: CollectionSpec, patterns: Sequence[str], limit: int) -> List[Tuple[str, str]]:
        """Rows whose lowercased name matches any pattern.

        Table and column names come from the registry, never from user input.

        Raises:
            IndexUnavailable: If the query fails
        """
        columns = f'{spec.id_col}, {spec.name_col}'
        if patterns:
            where = ' OR '.join(f'lower({spec.name_col}) LIKE ?' for _ in patterns)
            sql = f'SELECT {columns} FROM {spec.table} WHERE {where} LIMIT ?'
            params = [p.lower() for p in patterns] + [limit]
        else:
            sql = f'SELECT {columns} FROM {spec.table} LIMIT ?'
            params = [limit]

        try:
            rows = self.connection.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f'Candidate pull from {spec.table} failed: {e}')
            raise IndexUnavailable(f'store_query_failed: {e}')

        return [(str(row[0]), '' if row[1] is None else str(row[1])) for row in rows]


class EntityResolver:
    """Resolve free text to entity identifiers under an explicit confidence policy."""

    def __init__(self, config: Optional[ResolverConfig] = None, registry: Optional[CollectionRegistry] = None):
        self.config = config or default_config.resolver
        self.registry = registry or CollectionRegistry.default()

    def candidate_limit(self, limit: Optional[int] = None) -> int:
        requested = limit if limit is not None else self.config.max_candidates
        return max(1, min(self.config.hard_candidate_limit, int(requested)))

    def resolve(self, index: AliasIndex, query: str, collection: str, include_inactive: bool = False,
                limit: Optional[int] = None, escalate: bool = False) -> ResolveResult:
        """Resolve ``query`` against every record of ``collection`` in the alias index.

        Raises:
            MissingQuery: If the query is empty
            UnknownCollection: If the collection is not in the index
        """
        query = self._require_query(query)
        records = index.records(collection)
        if records is None:
            raise UnknownCollection(collection)

        matches = []
        for record in records:
            if not include_inactive and not is_active_status(record.status):
                continue
            value, alias = best_alias_score(query, record.aliases)
            if value <= 0:
                continue
            matches.append(Match(id=record.id, collection=collection, score=value, label=record.label,
                                 matched_alias=alias))

        result = self._decide(query, collection, sort_matches(matches, query), limit, escalate)
        result.version_tag = index.version_tag
        return result

    def resolve_any(self, index: AliasIndex, query: str, include_inactive: bool = False,
                    limit: int = 8) -> List[Match]:
        """Best matches across every collection, no confidence policy applied."""
        query = self._require_query(query)

        matches = []
        for collection, records in index.collections.items():
            for record in records:
                if not include_inactive and not is_active_status(record.status):
                    continue
                value, alias = best_alias_score(query, record.aliases)
                if value > 0:
                    matches.append(Match(id=record.id, collection=collection, score=value, label=record.label,
                                         matched_alias=alias))

        matches.sort(key=lambda m: (-m.score, m.collection, m.label.lower(), m.id))
        return matches[:max(1, min(30, limit))]

    def resolve_in_store(self, store: CandidateStore, query: str, collection: str, limit: Optional[int] = None,
                         escalate: bool = False) -> ResolveResult:
        """Resolve ``query`` against a bounded candidate pull from a backing store.

        Raises:
            MissingQuery: If the query is empty
            UnknownCollection: If the collection is not registered
            IndexUnavailable: If the store query fails
        """
        query = self._require_query(query)
        spec = self.registry.get(collection)
        if spec is None:
            raise UnknownCollection(collection)

        pull = max(10, min(200, self.config.store_candidate_pull))
        rows = store.fetch_candidates(spec, build_like_patterns(query), pull)

        matches = [
            Match(id=record_id, collection=collection, score=score(query, name), label=name or record_id)
            for record_id, name in rows
        ]
        return self._decide(query, collection, sort_matches(matches, query), limit, escalate)

    def _require_query(self, query: str) -> str:
        text = (query or '').strip()
        if not normalize(text):
            raise MissingQuery('Query is empty')
        return text

    def _decide(self, query: str, collection: str, ranked: List[Match], limit: Optional[int],
                escalate: bool) -> ResolveResult:
        match, candidates = apply_confidence_policy(ranked, self.config, self.candidate_limit(limit))

        if match is not None:
            outcome = ResolveOutcome.MATCH
        elif candidates:
            outcome = ResolveOutcome.CLARIFY
        else:
            outcome = ResolveOutcome.NO_MATCH

        if escalate and match is None:
            top = candidates[0].score if candidates else 0.0
            if top < self.config.escalate_below:
                outcome = ResolveOutcome.ESCALATE

        logger.debug(f'Resolved {query!r} in {collection}: {outcome.value} '
                     f'(top={ranked[0].score if ranked else 0:.3f}, candidates={len(candidates)})')
        return ResolveResult(query=query, collection=collection, outcome=outcome, match=match,
                             candidates=candidates)
