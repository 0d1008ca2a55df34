"""
Snapshot contract between the upstream data pipeline and the resolver.

The upstream collaborator publishes a JSON document of the form::

    {"version": "2026-01-11T06:00:00Z",
     "collections": {"farms": {"<id>": {"name": "...", ...}, ...}, ...}}

``version`` is optional; without it the load time becomes the version tag.
"""

import json
from typing import Any, Dict, Mapping, Optional

from ..models.core import Snapshot
from ..models.errors import IndexUnavailable
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import Clock, now_seconds

logger = get_logger(__name__)


def snapshot_from_mapping(data: Mapping[str, Any], clock: Optional[Clock] = None) -> Snapshot:
    """Validate a decoded snapshot document and wrap it.

    Collections that are missing, null or not mappings are dropped rather than
    failing the whole snapshot; records that are not mappings become empty.

    Raises:
        IndexUnavailable: If the document has no ``collections`` mapping
    """
    if not isinstance(data, Mapping):
        raise IndexUnavailable('snapshot_not_an_object')

    version = data.get('version')
    version = str(version) if version not in (None, '') else None

    raw_collections = data.get('collections')
    if not isinstance(raw_collections, Mapping):
        raise IndexUnavailable('snapshot_missing_collections', version_tag=f'snap:{version}' if version else None)

    collections: Dict[str, Dict[str, Mapping[str, Any]]] = {}
    for name, records in raw_collections.items():
        if not isinstance(records, Mapping):
            logger.warning(f'Skipping collection {name!r}: expected an object of records')
            continue
        collections[str(name)] = {
            str(record_id): (record if isinstance(record, Mapping) else {})
            for record_id, record in records.items()
        }

    snapshot = Snapshot(collections=collections, loaded_at=now_seconds(clock), version=version)
    logger.info(f'Loaded snapshot {snapshot.version_tag} with {len(collections)} collections')
    return snapshot


def load_snapshot_file(path: str, clock: Optional[Clock] = None) -> Snapshot:
    """Read and validate a snapshot JSON file.

    Raises:
        IndexUnavailable: If the file cannot be read or decoded
    """
    try:
        with open(path, 'r', encoding='utf-8') as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f'Failed to read snapshot {path}: {e}')
        raise IndexUnavailable(f'snapshot_unreadable: {e}')

    return snapshot_from_mapping(data, clock=clock)
