"""
Conversation Engine: one service instance owning the alias index cache,
conversation memory, disambiguation and paging for a set of threads.

A turn is interpreted in a fixed order: a pending disambiguation first, then
paging commands, then references to the last list shown, and only then a fresh
resolution of the text.
"""

import threading
from typing import Callable, Dict, List, Optional, Sequence

from ..models.core import (AliasIndex, Candidate, FollowupResult, HandlerRequest, Match, PagingResult, ResolveOutcome,
                           ResolveResult, Snapshot)
from ..models.errors import EscalationError, IndexUnavailable, MissingQuery
from ..utils.config import AppConfig
from ..utils.config import config as default_config
from ..utils.logging_config import get_logger
from ..utils.normalize import normalize_question
from ..utils.timestamp_utils import Clock
from .alias_index import AliasIndexBuilder, AliasIndexCache, is_active_status
from .collection_registry import CollectionRegistry
from .conversation_memory import ConversationMemoryStore
from .disambiguation import DisambiguationStateMachine, DomainHandler
from .escalation import EscalationService
from .paging import ContinuationPager
from .resolver import CandidateStore, EntityResolver

logger = get_logger(__name__)

INDEX_UNAVAILABLE_REPLY = "I can't look that up right now because the data isn't loaded. Please try again shortly."
EMPTY_QUESTION_REPLY = 'What would you like to look up?'


def default_handler(request: HandlerRequest) -> str:
    if request.refinement:
        return f'{request.refinement} for {request.collection}'
    return f'{request.label} ({request.collection} {request.entity_id})'


def no_match_reply(collection: str, query: str) -> str:
    return f'I couldn\'t find any {collection} matching "{query}".'


class ConversationEngine:
    """Entity resolution with short-term, per-thread conversational memory."""

    def __init__(self,
                 config: Optional[AppConfig] = None,
                 registry: Optional[CollectionRegistry] = None,
                 handler: Optional[DomainHandler] = None,
                 escalation: Optional[EscalationService] = None,
                 store: Optional[CandidateStore] = None,
                 snapshot: Optional[Snapshot] = None,
                 clock: Optional[Clock] = None):
        """Initialize the engine and its state objects.

        Args:
            config: Application config (uses the global config if None)
            registry: Collection metadata (default collections if None)
            handler: Downstream domain handler called with resolved entities
            escalation: LLM fallback; built from config when enabled and None
            store: Backing store for index-assisted resolution
            snapshot: Initial snapshot, if already available
            clock: Time source for TTLs and timestamps
        """
        self.config = config or default_config
        self.registry = registry or CollectionRegistry.default()
        self.handler = handler or default_handler
        self.store = store
        self.clock = clock

        self.memory = ConversationMemoryStore(self.config.memory, clock=clock)
        self.index_cache = AliasIndexCache(AliasIndexBuilder(self.registry, clock=clock),
                                           max_versions=self.config.index.max_cached_versions)
        self.resolver = EntityResolver(self.config.resolver, self.registry)
        self.disambiguation = DisambiguationStateMachine(self.memory, self.handler, clock=clock)
        self.pager = ContinuationPager(self.memory, self.config.memory)

        if escalation is None and self.config.escalation.enabled:
            escalation = EscalationService(self.config.escalation, llm_config=self.config.bedrock_llm)
        self.escalation = escalation

        self._snapshot = snapshot
        self._snapshot_lock = threading.Lock()

        logger.info('Initialized ConversationEngine')

    # Snapshot and index

    def load_snapshot(self, snapshot: Snapshot) -> None:
        with self._snapshot_lock:
            self._snapshot = snapshot
        logger.info(f'Engine now serving snapshot {snapshot.version_tag}')

    @property
    def snapshot(self) -> Optional[Snapshot]:
        with self._snapshot_lock:
            return self._snapshot

    def index(self) -> AliasIndex:
        """Alias index for the current snapshot.

        Raises:
            IndexUnavailable: If no snapshot has been loaded
        """
        return self.index_cache.get_or_build(self.snapshot)

    # Stateless resolution

    def resolve(self, query: str, collection: str, include_inactive: bool = False,
                limit: Optional[int] = None) -> ResolveResult:
        """Resolve free text to an entity of ``collection``.

        Raises:
            MissingQuery, UnknownCollection, IndexUnavailable
        """
        return self.resolver.resolve(self.index(), query, collection, include_inactive=include_inactive, limit=limit)

    def resolve_any(self, query: str, include_inactive: bool = False, limit: int = 8) -> List[Match]:
        return self.resolver.resolve_any(self.index(), query, include_inactive=include_inactive, limit=limit)

    def resolve_in_store(self, query: str, collection: str, limit: Optional[int] = None) -> ResolveResult:
        """Resolve against the backing store instead of the in-memory index.

        Raises:
            IndexUnavailable: If no store is configured or the pull fails
        """
        if self.store is None:
            raise IndexUnavailable('no_candidate_store')
        return self.resolver.resolve_in_store(self.store, query, collection, limit=limit)

    # Conversational follow-ups

    def handle_followup(self, thread_id: str, utterance: str) -> FollowupResult:
        return self.disambiguation.handle_followup(thread_id, utterance)

    def handle_paging(self, thread_id: str, utterance: str) -> PagingResult:
        return self.pager.handle_paging(thread_id, utterance)

    def present_list(self,
                     thread_id: str,
                     collection: str,
                     title: str,
                     items: Sequence[Candidate],
                     format_item: Optional[Callable[[Candidate], str]] = None,
                     page_size: Optional[int] = None) -> str:
        """Show a list: remember its items and render the first page."""
        render = format_item or (lambda item: item.name)
        self.memory.set_last_list(thread_id, collection, items)
        return self.pager.start(thread_id, title, [f'• {render(item)}' for item in items], page_size)

    def handle_turn(self, thread_id: str, utterance: str, collection: str,
                    include_inactive: bool = False) -> FollowupResult:
        """Interpret one user utterance on a thread that is talking about ``collection``.

        Raises:
            UnknownCollection: If ``collection`` is not in the index
        """
        text = normalize_question(utterance).text
        if not text:
            return FollowupResult(handled=True, answer=EMPTY_QUESTION_REPLY)

        followup = self.handle_followup(thread_id, text)
        if followup.handled:
            return followup

        paging = self.handle_paging(thread_id, text)
        if paging.handled:
            return FollowupResult(handled=True, answer=paging.answer)

        refined = self._handle_refinement(thread_id, text)
        if refined.handled:
            return refined

        reference = self.disambiguation.handle_list_reference(thread_id, text)
        if reference.handled:
            return reference

        try:
            result = self.resolver.resolve(self.index(), text, collection, include_inactive=include_inactive,
                                           escalate=self.escalation is not None)
        except IndexUnavailable as e:
            logger.error(f'Cannot resolve for thread {thread_id}: {e}')
            return FollowupResult(handled=True, answer=INDEX_UNAVAILABLE_REPLY)
        except MissingQuery:
            return FollowupResult(handled=True, answer=EMPTY_QUESTION_REPLY)

        return self._answer(thread_id, text, result)

    def _handle_refinement(self, thread_id: str, text: str) -> FollowupResult:
        last_list = self.memory.get_last_list(thread_id)
        if last_list is None:
            return FollowupResult(handled=False)

        refinement = self.registry.detect_refinement(last_list.kind, text)
        if refinement is None:
            return FollowupResult(handled=False)

        logger.debug(f'Thread {thread_id} refining {last_list.kind} list with {refinement}')
        answer = self.handler(HandlerRequest(thread_id=thread_id,
                                             collection=last_list.kind,
                                             entity_id=None,
                                             label=None,
                                             original_text=text,
                                             refinement=refinement))
        return FollowupResult(handled=True, answer=answer)

    def _answer(self, thread_id: str, text: str, result: ResolveResult) -> FollowupResult:
        if result.outcome == ResolveOutcome.MATCH:
            return self._forward(thread_id, result.collection, result.match.id, result.match.label, text)

        if result.outcome == ResolveOutcome.CLARIFY:
            question = self.disambiguation.ask(thread_id, result.collection, result.query, result.candidates, text)
            return FollowupResult(handled=True, answer=question)

        if result.outcome == ResolveOutcome.ESCALATE:
            return self._escalate(thread_id, text, result)

        return FollowupResult(handled=True, answer=no_match_reply(result.collection, result.query))

    def _forward(self, thread_id: str, collection: str, entity_id: str, label: str, text: str) -> FollowupResult:
        self.memory.set_last_selection(thread_id, collection, Candidate(id=entity_id, name=label))
        answer = self.handler(HandlerRequest(thread_id=thread_id,
                                             collection=collection,
                                             entity_id=entity_id,
                                             label=label,
                                             original_text=text))
        return FollowupResult(handled=True, answer=answer, resolved_id=entity_id)

    def _escalate(self, thread_id: str, text: str, result: ResolveResult) -> FollowupResult:
        # No memory lock is held while the collaborator is in flight
        by_label = self._labels_for_escalation(result.collection)
        try:
            decision = self.escalation.escalate(result.collection, text, list(by_label))
        except EscalationError as e:
            logger.warning(f'Escalation failed for thread {thread_id}, using deterministic fallback: {e}')
            return self._fallback(thread_id, text, result)

        if decision.action == 'retry':
            chosen = by_label[decision.match]
            return self._forward(thread_id, result.collection, chosen.id, chosen.name, text)

        if decision.action == 'clarify':
            if not decision.options:
                return self._fallback(thread_id, text, result)
            options = [by_label[label] for label in decision.options]
            if len(options) == 1:
                return self._forward(thread_id, result.collection, options[0].id, options[0].name, text)
            question = self.disambiguation.ask(thread_id, result.collection, result.query, options, text)
            return FollowupResult(handled=True, answer=question)

        return FollowupResult(handled=True, answer=no_match_reply(result.collection, result.query))

    def _fallback(self, thread_id: str, text: str, result: ResolveResult) -> FollowupResult:
        if result.candidates:
            question = self.disambiguation.ask(thread_id, result.collection, result.query, result.candidates, text)
            return FollowupResult(handled=True, answer=question)
        return FollowupResult(handled=True, answer=no_match_reply(result.collection, result.query))

    def _labels_for_escalation(self, collection: str) -> Dict[str, Candidate]:
        by_label: Dict[str, Candidate] = {}
        for record in self.index().records(collection) or ():
            if not is_active_status(record.status):
                continue
            by_label.setdefault(record.label, Candidate(id=record.id, name=record.label))
            if len(by_label) >= self.escalation.config.max_candidates:
                break
        return by_label
