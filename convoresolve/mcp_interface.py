"""
MCP Interface Layer using fastmcp to expose resolution and follow-up turns.
"""
from typing import Any, Dict, Optional

from fastmcp import FastMCP

from convoresolve.models.errors import ResolutionError
from convoresolve.services.conversation_engine import ConversationEngine
from convoresolve.services.snapshot import load_snapshot_file
from convoresolve.utils.config import config
from convoresolve.utils.health_check import get_health_status
from convoresolve.utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Entity Resolver')
engine = ConversationEngine()


def _ensure_snapshot() -> None:
    if engine.snapshot is None and config.index.snapshot_path:
        engine.load_snapshot(load_snapshot_file(config.index.snapshot_path))


@mcp.tool()
def resolve_entity(query: str, collection: str, include_inactive: bool = False, limit: int = 12) -> Dict[str, Any]:
    """Resolve free text to an entity of a collection.

    Args:
        query: User text naming the entity (may be abbreviated or misspelled)
        collection: Collection to search (e.g. farms, fields, rtkTowers)
        include_inactive: Also consider archived/inactive records
        limit: Maximum number of "did you mean" candidates

    Returns:
        {"match": {id, label, score} | null, "candidates": [{id, label, score}]}
    """
    try:
        _ensure_snapshot()
        return engine.resolve(query, collection, include_inactive=include_inactive, limit=limit).to_dict()
    except ResolutionError as e:
        logger.error(f'Resolution error in MCP resolve: {e}')
        raise Exception(f'Resolve failed: {e}')


@mcp.tool()
def handle_followup(thread_id: str, utterance: str) -> Dict[str, Optional[Any]]:
    """Interpret a reply as a pick against the thread's pending "which one" question."""
    result = engine.handle_followup(thread_id, utterance)
    return {'handled': result.handled, 'answer': result.answer, 'resolved_id': result.resolved_id}


@mcp.tool()
def handle_paging(thread_id: str, utterance: str) -> Dict[str, Optional[Any]]:
    """Serve "more" / "show all" against the thread's saved list."""
    result = engine.handle_paging(thread_id, utterance)
    return {'handled': result.handled, 'answer': result.answer}


@mcp.tool()
def handle_turn(thread_id: str, utterance: str, collection: str) -> Dict[str, Optional[Any]]:
    """Run one full conversational turn: pending pick, paging, list references, then resolution."""
    try:
        _ensure_snapshot()
        result = engine.handle_turn(thread_id, utterance, collection)
    except ResolutionError as e:
        logger.error(f'Resolution error in MCP turn: {e}')
        raise Exception(f'Turn failed: {e}')
    return {'handled': result.handled, 'answer': result.answer, 'resolved_id': result.resolved_id}


@mcp.tool()
def health() -> Dict[str, Any]:
    """Report alias index, memory and escalation health."""
    try:
        _ensure_snapshot()
    except ResolutionError as e:
        logger.warning(f'Snapshot not loaded for health check: {e}')
    return get_health_status(engine)


if __name__ == '__main__':
    mcp.run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)
