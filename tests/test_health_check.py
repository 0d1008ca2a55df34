"""Tests for engine health reporting."""

from convoresolve.services.conversation_engine import ConversationEngine
from convoresolve.utils.health_check import check_health, get_health_status


class TestHealth:
    """Tests for get_health_status and check_health."""

    def test_healthy_engine(self, engine):
        """A loaded snapshot reports its collections."""
        engine.handle_turn('t1', 'barlow', 'farms')
        status = get_health_status(engine)
        assert status['alias_index']['healthy']
        assert status['alias_index']['version'] == 'snap:v1'
        assert status['alias_index']['collections']['farms'] == 5
        assert status['conversation_memory']['threads'] == 1
        assert 'bedrock_llm' not in status
        assert check_health(engine)

    def test_missing_snapshot(self, app_config, clock):
        """Without a snapshot the index is reported unhealthy."""
        engine = ConversationEngine(config=app_config, clock=clock)
        status = get_health_status(engine)
        assert not status['alias_index']['healthy']
        assert status['alias_index']['reason'] == 'snapshot_not_loaded'
        assert not check_health(engine)

    def test_escalation_reported(self, make_escalating_engine):
        """With escalation on, the LLM is checked too."""
        engine, _ = make_escalating_engine([])
        status = get_health_status(engine)
        assert status['bedrock_llm'] == {'healthy': True, 'service': 'Amazon Bedrock LLM', 'model': 'fake-model'}
