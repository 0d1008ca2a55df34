"""Shared fixtures for resolver, memory and conversation tests.

This module provides:
- A controllable clock so TTL behavior is tested without sleeping
- An explicit AppConfig independent of the process environment
- A small sample snapshot with farms, numeric-prefixed fields and towers
- A recording domain handler and a scripted fake LLM client
"""

from typing import Any, Dict, List, Optional, Tuple

import pytest

from convoresolve.models.core import HandlerRequest
from convoresolve.services.conversation_engine import ConversationEngine
from convoresolve.services.conversation_memory import ConversationMemoryStore
from convoresolve.services.escalation import EscalationService
from convoresolve.services.snapshot import snapshot_from_mapping
from convoresolve.utils.bedrock_llm import BedrockLLMError
from convoresolve.utils.config import (AppConfig, BedrockLLMConfig, EscalationConfig, IndexConfig, MCPConfig,
                                       MemoryConfig, ResolverConfig)


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingHandler:
    """Domain handler that records every request it receives."""

    def __init__(self):
        self.requests: List[HandlerRequest] = []

    def __call__(self, request: HandlerRequest) -> str:
        self.requests.append(request)
        if request.refinement:
            return f'refined:{request.collection}:{request.refinement}'
        return f'answer:{request.entity_id}'


class FakeLLM:
    """Stands in for BedrockLLM; replies are scripted per call."""

    model_id = 'fake-model'

    def __init__(self, replies: Optional[List[Any]] = None):
        self.replies = list(replies or [])
        self.calls: List[Tuple[List[Dict[str, Any]], str]] = []

    def generate_response(self, messages, system_prompt, max_tokens=None, temperature=None, stop_sequences=None):
        self.calls.append((messages, system_prompt))
        reply = self.replies.pop(0) if self.replies else '{"action": "no_match"}'
        if isinstance(reply, Exception):
            raise reply
        return reply, None

    def health_check(self) -> bool:
        return True


SAMPLE_DATA = {
    'version': 'v1',
    'collections': {
        'farms': {
            'farm-ackley': {'name': 'Ackley'},
            'farm-barlow': {'name': 'Barlow'},
            'farm-carlin': {'name': 'Carlin'},
            'farm-swan': {'name': 'Swan Creek'},
            'farm-old': {'name': 'Old Mill', 'status': 'archived'},
        },
        'fields': {
            'fld-0801': {'name': '0801-Lloyd N340'},
            'fld-0515': {'name': '0515-Grandma Home'},
            'fld-0110': {'name': '0110-North Forty'},
        },
        'rtkTowers': {
            'twr-1': {'name': 'Carlinville', 'frequency': '464.5'},
            'twr-2': {'name': 'Raymond'},
            'twr-3': {'name': 'Raymond South'},
        },
        'emptyCollection': {},
    }
}


def build_config(escalation_enabled: bool = False) -> AppConfig:
    return AppConfig(environment='test',
                     log_level='DEBUG',
                     resolver=ResolverConfig(high_threshold=0.88,
                                             medium_threshold=0.82,
                                             min_margin=0.06,
                                             max_candidates=12,
                                             hard_candidate_limit=20,
                                             store_candidate_pull=80,
                                             escalate_below=0.5),
                     memory=MemoryConfig(ttl_hours=12, default_page_size=10, min_page_size=10, max_page_size=80),
                     index=IndexConfig(max_cached_versions=4, snapshot_path=None),
                     escalation=EscalationConfig(enabled=escalation_enabled,
                                                 max_candidates=250,
                                                 max_concurrent=2,
                                                 acquire_timeout=0.1),
                     bedrock_llm=BedrockLLMConfig(region='us-east-1',
                                                  model_id='fake-model',
                                                  max_tokens=100,
                                                  temperature=0.0,
                                                  retry_attempts=2,
                                                  retry_delay=0.0,
                                                  connect_timeout=1,
                                                  read_timeout=1),
                     mcp=MCPConfig(transport='stdio', host='127.0.0.1', port=8000))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app_config():
    return build_config()


@pytest.fixture
def snapshot(clock):
    return snapshot_from_mapping(SAMPLE_DATA, clock=clock)


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def memory(app_config, clock):
    return ConversationMemoryStore(app_config.memory, clock=clock)


@pytest.fixture
def engine(app_config, handler, snapshot, clock):
    return ConversationEngine(config=app_config, handler=handler, snapshot=snapshot, clock=clock)


@pytest.fixture
def llm_error():
    return BedrockLLMError('Bedrock LLM failed after 2 attempts: throttled')


@pytest.fixture
def make_llm():
    return FakeLLM


@pytest.fixture
def make_escalating_engine(handler, snapshot, clock):
    """Engine whose escalation path talks to a FakeLLM with the given replies."""

    def factory(replies):
        config = build_config(escalation_enabled=True)
        llm = FakeLLM(replies)
        escalation = EscalationService(config.escalation, llm=llm)
        engine = ConversationEngine(config=config, handler=handler, escalation=escalation, snapshot=snapshot,
                                    clock=clock)
        return engine, llm

    return factory
