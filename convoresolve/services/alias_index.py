"""
Alias Index Builder: turns a snapshot into matchable alias sets per entity.
"""

import threading
from collections import OrderedDict
from typing import Any, Collection, Dict, List, Mapping, Optional, Set, Tuple

from ..models.core import AliasIndex, EntityRecord, Snapshot
from ..models.errors import IndexUnavailable
from ..utils.logging_config import get_logger
from ..utils.normalize import acronym, has_numeric_label, normalize, numeric_prefix, numeric_short, squish, tokens
from ..utils.timestamp_utils import Clock, now_seconds
from .collection_registry import CollectionRegistry

logger = get_logger(__name__)

# Record fields that may carry a human-readable label, in display priority order
LABEL_FIELDS = ('name', 'displayName', 'title', 'label', 'unit', 'assetTag', 'makeModel', 'model', 'email')

INACTIVE_STATUSES = frozenset({'archived', 'inactive'})

DEFAULT_NUMERIC_COLLECTIONS = frozenset(
    name for name, numeric in CollectionRegistry.default().numeric_collections().items() if numeric)


def is_active_status(status: Optional[str]) -> bool:
    value = (status or '').strip().lower()
    return not value or value not in INACTIVE_STATUSES


def record_status(record: Mapping[str, Any]) -> str:
    status = record.get('status')
    if status is not None and str(status).strip():
        return str(status).strip()
    if record.get('archived') is True:
        return 'archived'
    return ''


def candidate_labels(record_id: str, record: Mapping[str, Any]) -> Tuple[str, ...]:
    """Display labels of a record, deduplicated case-insensitively, raw id last."""
    raw: List[str] = []
    for key in LABEL_FIELDS:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            raw.append(value.strip())
    raw.append(str(record_id or '').strip())

    seen: Set[str] = set()
    labels: List[str] = []
    for label in raw:
        key = label.lower()
        if not key or key in seen:
            continue
        seen.add(key)
        labels.append(label)
    return tuple(labels)


def build_aliases(label: str, collection: str = '',
                  numeric_collections: Collection[str] = DEFAULT_NUMERIC_COLLECTIONS) -> Set[str]:
    """All alias strings derived from one label.

    An empty or whitespace-only label yields an empty set.
    """
    aliases: Set[str] = set()
    raw = (label or '').strip()
    if not raw:
        return aliases

    aliases.add(raw.lower())
    normalized = normalize(raw)
    if normalized:
        aliases.add(normalized)
    squished = squish(raw)
    if squished:
        aliases.add(squished)

    toks = tokens(raw)
    aliases.update(t for t in toks if len(t) >= 2)

    initials = acronym(toks)
    if initials:
        aliases.add(initials)

    if collection in numeric_collections or has_numeric_label(raw):
        prefix = numeric_prefix(raw)
        if prefix:
            aliases.add(prefix)
            short = numeric_short(prefix)
            if short:
                aliases.add(short)

    return aliases


class AliasIndexBuilder:
    """Builds an immutable AliasIndex from a snapshot."""

    def __init__(self, registry: Optional[CollectionRegistry] = None, clock: Optional[Clock] = None):
        registry = registry or CollectionRegistry.default()
        self.numeric_collections = frozenset(
            name for name, numeric in registry.numeric_collections().items() if numeric)
        self.clock = clock

    def build_record(self, record_id: str, record: Mapping[str, Any], collection: str) -> EntityRecord:
        labels = candidate_labels(record_id, record)
        aliases: Set[str] = set()
        for label in labels:
            aliases.update(build_aliases(label, collection, self.numeric_collections))

        return EntityRecord(id=str(record_id),
                            collection=collection,
                            status=record_status(record),
                            labels=labels,
                            aliases=frozenset(aliases))

    def build(self, snapshot: Snapshot) -> AliasIndex:
        if snapshot is None or not isinstance(snapshot.collections, Mapping):
            raise IndexUnavailable('snapshot_missing_collections',
                                   version_tag=snapshot.version_tag if snapshot is not None else None)

        collections: Dict[str, Tuple[EntityRecord, ...]] = {}
        for name, records in snapshot.collections.items():
            if not isinstance(records, Mapping):
                continue
            collections[name] = tuple(
                self.build_record(record_id, record or {}, name) for record_id, record in records.items())

        index = AliasIndex(version_tag=snapshot.version_tag, built_at=now_seconds(self.clock), collections=collections)
        logger.info(f'Built alias index {index.version_tag}: {len(collections)} collections, '
                    f'{index.record_count} records')
        return index


class AliasIndexCache:
    """Per-version cache of alias indexes.

    The build-or-reuse check and the cache write happen under one lock so that
    concurrent first touches of a new snapshot build it once.
    """

    def __init__(self, builder: Optional[AliasIndexBuilder] = None, max_versions: int = 4):
        self.builder = builder or AliasIndexBuilder()
        self.max_versions = max(1, max_versions)
        self._indexes: 'OrderedDict[str, AliasIndex]' = OrderedDict()
        self._lock = threading.Lock()

    def get_or_build(self, snapshot: Optional[Snapshot]) -> AliasIndex:
        """Index for the snapshot's version tag, building it on first use.

        Raises:
            IndexUnavailable: If no snapshot has been loaded; carries the
                version of the most recently cached index, if any
        """
        if snapshot is None:
            with self._lock:
                last = next(reversed(self._indexes), None)
            raise IndexUnavailable('snapshot_not_loaded', version_tag=last)

        key = snapshot.version_tag
        with self._lock:
            index = self._indexes.get(key)
            if index is not None:
                self._indexes.move_to_end(key)
                return index

            index = self.builder.build(snapshot)
            self._indexes[key] = index
            while len(self._indexes) > self.max_versions:
                evicted, _ = self._indexes.popitem(last=False)
                logger.debug(f'Evicted alias index {evicted}')
            return index

    def versions(self) -> List[str]:
        with self._lock:
            return list(self._indexes)
