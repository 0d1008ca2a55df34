"""
Configuration management for the resolver, conversation memory and escalation client.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class ResolverConfig:
    """Confidence policy and candidate bounds for entity resolution."""
    high_threshold: float
    medium_threshold: float
    min_margin: float
    max_candidates: int
    hard_candidate_limit: int
    store_candidate_pull: int
    escalate_below: float


@dataclass
class MemoryConfig:
    """Configuration for per-thread conversation memory and paging."""
    ttl_hours: float
    default_page_size: int
    min_page_size: int
    max_page_size: int


@dataclass
class IndexConfig:
    """Configuration for the alias index cache and snapshot source."""
    max_cached_versions: int
    snapshot_path: Optional[str]


@dataclass
class EscalationConfig:
    """Configuration for the optional LLM escalation path."""
    enabled: bool
    max_candidates: int
    max_concurrent: int
    acquire_timeout: float


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float
    connect_timeout: float
    read_timeout: float


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    resolver: ResolverConfig
    memory: MemoryConfig
    index: IndexConfig
    escalation: EscalationConfig
    bedrock_llm: BedrockLLMConfig
    mcp: MCPConfig


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    resolver_config = ResolverConfig(high_threshold=float(os.getenv('RESOLVER_HIGH_THRESHOLD', '0.88')),
                                     medium_threshold=float(os.getenv('RESOLVER_MEDIUM_THRESHOLD', '0.82')),
                                     min_margin=float(os.getenv('RESOLVER_MIN_MARGIN', '0.06')),
                                     max_candidates=int(os.getenv('RESOLVER_MAX_CANDIDATES', '12')),
                                     hard_candidate_limit=int(os.getenv('RESOLVER_HARD_CANDIDATE_LIMIT', '20')),
                                     store_candidate_pull=int(os.getenv('RESOLVER_STORE_CANDIDATE_PULL', '80')),
                                     escalate_below=float(os.getenv('RESOLVER_ESCALATE_BELOW', '0.5')))

    memory_config = MemoryConfig(ttl_hours=float(os.getenv('MEMORY_TTL_HOURS', '12')),
                                 default_page_size=int(os.getenv('MEMORY_DEFAULT_PAGE_SIZE', '10')),
                                 min_page_size=int(os.getenv('MEMORY_MIN_PAGE_SIZE', '10')),
                                 max_page_size=int(os.getenv('MEMORY_MAX_PAGE_SIZE', '80')))

    index_config = IndexConfig(max_cached_versions=int(os.getenv('INDEX_MAX_CACHED_VERSIONS', '4')),
                               snapshot_path=os.getenv('SNAPSHOT_PATH') or None)

    escalation_config = EscalationConfig(enabled=_env_bool('ESCALATION_ENABLED', 'false'),
                                         max_candidates=int(os.getenv('ESCALATION_MAX_CANDIDATES', '250')),
                                         max_concurrent=int(os.getenv('ESCALATION_MAX_CONCURRENT', '4')),
                                         acquire_timeout=float(os.getenv('ESCALATION_ACQUIRE_TIMEOUT', '2.0')))

    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-haiku-20240307-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '350')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.0')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '2')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '0.5')),
                                          connect_timeout=float(os.getenv('BEDROCK_LLM_CONNECT_TIMEOUT', '5')),
                                          read_timeout=float(os.getenv('BEDROCK_LLM_READ_TIMEOUT', '20')))

    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     resolver=resolver_config,
                     memory=memory_config,
                     index=index_config,
                     escalation=escalation_config,
                     bedrock_llm=bedrock_llm_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
