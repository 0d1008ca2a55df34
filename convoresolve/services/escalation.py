"""
Escalation Service: asks an LLM to pick from a candidate list the resolver could not settle.

The collaborator is constrained to a JSON contract and every value it returns
is checked against the supplied candidates. Nothing outside the list is ever
passed on.
"""

import threading
from typing import List, Optional, Sequence

from ..models.core import EscalationDecision
from ..models.errors import EscalationInvalid, EscalationUnavailable
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import BedrockLLMConfig, EscalationConfig
from ..utils.config import config as default_config
from ..utils.json_utils import parse_json_object
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

ACTIONS = ('retry', 'clarify', 'no_match')
CONFIDENCES = ('high', 'medium', 'low')


def build_system_prompt(entity_type: str) -> str:
    return f"""
You are a fuzzy matcher for entity names.

Entity type: {entity_type}

You MUST choose from the provided candidate list. Return ONLY a JSON object with this exact format:
```json
{{
  "action": "retry|clarify|no_match",
  "match": "<exact item from the list, or empty>",
  "ask": "<question for the user if clarify, else empty>",
  "options": ["<exact items from the list if clarify>"],
  "confidence": "high|medium|low"
}}
```

Rules:
- If there is a very close typo or shorthand match, action="retry" and match MUST be exactly one item from the list.
- If several are plausible, action="clarify", with up to 3 options copied exactly from the list.
- If none are plausible, action="no_match".
- Never invent names that are not in the list.""".strip()


class EscalationService:
    """Optional, rate-limited LLM fallback for inconclusive resolutions."""

    def __init__(self,
                 config: Optional[EscalationConfig] = None,
                 llm: Optional[BedrockLLM] = None,
                 llm_config: Optional[BedrockLLMConfig] = None):
        """Initialize the escalation service.

        Args:
            config: Escalation limits (uses the global config if None)
            llm: LLM client; built lazily from ``llm_config`` on first use if None
            llm_config: Bedrock settings used when ``llm`` is not given
        """
        self.config = config or default_config.escalation
        self._llm = llm
        self._llm_config = llm_config or default_config.bedrock_llm
        self._llm_lock = threading.Lock()
        self._slots = threading.BoundedSemaphore(max(1, self.config.max_concurrent))

        logger.info('Initialized EscalationService')

    @property
    def llm(self) -> BedrockLLM:
        with self._llm_lock:
            if self._llm is None:
                self._llm = BedrockLLM(self._llm_config)
            return self._llm

    def escalate(self, entity_type: str, user_text: str, candidates: Sequence[str]) -> EscalationDecision:
        """Ask the collaborator to pick ``user_text`` from ``candidates``.

        Raises:
            EscalationUnavailable: If the LLM cannot be reached or too many calls are in flight
            EscalationInvalid: If the reply is malformed or names something outside the list
        """
        choices = self._dedupe(candidates)[:self.config.max_candidates]
        if not choices:
            raise EscalationInvalid('No candidates to escalate with')

        if not self._slots.acquire(timeout=self.config.acquire_timeout):
            logger.warning('Escalation skipped: concurrency limit reached')
            raise EscalationUnavailable('Escalation is saturated')

        try:
            listing = '\n'.join(choices)
            messages = [{
                'role': 'user',
                'content': [{
                    'text': f'User text: {user_text}\n\nCandidates:\n{listing}'
                }]
            }, {
                'role': 'assistant',
                'content': [{
                    'text': '```json'
                }]
            }]
            response, _ = self.llm.generate_response(messages=messages,
                                                     system_prompt=build_system_prompt(entity_type),
                                                     stop_sequences=['```'])
        except BedrockLLMError as e:
            logger.error(f'LLM error during escalation: {e}')
            raise EscalationUnavailable(f'Escalation failed: {e}')
        finally:
            self._slots.release()

        decision = self.parse_decision(response, choices)
        logger.debug(f'Escalation for {user_text!r} in {entity_type}: {decision.action}')
        return decision

    def parse_decision(self, response: str, candidates: Sequence[str]) -> EscalationDecision:
        """Validate a raw collaborator reply against the candidate list.

        Raises:
            EscalationInvalid: If the reply breaks the contract
        """
        try:
            data = parse_json_object(response or '')
        except ValueError as e:
            logger.error(f'Failed to parse escalation JSON: {e}')
            raise EscalationInvalid(f'Malformed escalation reply: {e}')

        allowed = set(candidates)
        action = str(data.get('action') or '').strip().lower()
        confidence = str(data.get('confidence') or 'low').strip().lower()
        if confidence not in CONFIDENCES:
            confidence = 'low'

        if action == 'retry':
            match = str(data.get('match') or '').strip()
            if match not in allowed:
                raise EscalationInvalid(f'Escalation picked {match!r}, which is not a candidate')
            return EscalationDecision(action='retry', match=match, confidence=confidence)

        if action == 'clarify':
            raw_options = data.get('options') or []
            if not isinstance(raw_options, list):
                raise EscalationInvalid('Escalation options must be a list')
            options = [str(o).strip() for o in raw_options]
            invalid = [o for o in options if o not in allowed]
            if invalid:
                raise EscalationInvalid(f'Escalation offered options outside the list: {invalid}')
            ask = str(data.get('ask') or '').strip() or 'Which one did you mean?'
            return EscalationDecision(action='clarify', ask=ask, options=self._dedupe(options), confidence=confidence)

        if action == 'no_match':
            return EscalationDecision(action='no_match', confidence=confidence)

        raise EscalationInvalid(f'Unknown escalation action: {action!r}')

    @staticmethod
    def _dedupe(values: Sequence[str]) -> List[str]:
        seen = set()
        out = []
        for value in values:
            if value and value not in seen:
                seen.add(value)
                out.append(value)
        return out
