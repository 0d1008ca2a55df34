"""
Health check utilities for the resolver engine.
"""

from typing import TYPE_CHECKING, Any, Dict

from ..models.errors import IndexUnavailable
from .logging_config import get_logger
from .timestamp_utils import to_datetime

if TYPE_CHECKING:
    from ..services.conversation_engine import ConversationEngine

logger = get_logger(__name__)


def check_health(engine: 'ConversationEngine') -> bool:
    """Check the health of all engine components.

    Returns:
        True if all components are healthy, False otherwise
    """
    health_status = get_health_status(engine)
    all_healthy = all(status.get('healthy', False) for status in health_status.values())

    if all_healthy:
        logger.info('All engine components are healthy')
    else:
        logger.warning('Some engine components are unhealthy')

    return all_healthy


def get_health_status(engine: 'ConversationEngine') -> Dict[str, Any]:
    """Get detailed health status of each component.

    Returns:
        Dictionary with health status of each component
    """
    health_status: Dict[str, Any] = {}

    try:
        index = engine.index()
        health_status['alias_index'] = {
            'healthy': True,
            'version': index.version_tag,
            'built_at': to_datetime(index.built_at).isoformat(),
            'collections': {name: len(records) for name, records in index.collections.items()}
        }
    except IndexUnavailable as e:
        health_status['alias_index'] = {'healthy': False, 'error': str(e), 'reason': e.reason}

    health_status['conversation_memory'] = {
        'healthy': True,
        'threads': engine.memory.thread_count(),
        'ttl_hours': engine.memory.config.ttl_hours
    }

    if engine.escalation is not None:
        llm_healthy = engine.escalation.llm.health_check()
        health_status['bedrock_llm'] = {
            'healthy': llm_healthy,
            'service': 'Amazon Bedrock LLM',
            'model': engine.escalation.llm.model_id
        }

    return health_status
