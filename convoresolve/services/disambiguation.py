"""
Disambiguation state machine.

A thread is IDLE or AWAITING_PICK. An inconclusive resolution stores its
candidates as a pending disambiguation and asks the user to choose; the next
utterance on that thread is interpreted as a pick before anything else.
"""

from enum import Enum
from typing import Callable, List, Optional, Sequence, Union

from ..models.core import Candidate, FollowupResult, HandlerRequest, Match, PendingDisambiguation
from ..models.errors import AmbiguousNoPick
from ..utils.logging_config import get_logger
from ..utils.normalize import normalize, tokens
from ..utils.timestamp_utils import Clock, now_seconds
from .conversation_memory import ConversationMemoryStore

logger = get_logger(__name__)

DomainHandler = Callable[[HandlerRequest], str]

QUESTION_HEADER = 'Which one did you mean?'
QUESTION_FOOTER = 'Reply with 1, 2, 3… or type the name.'
CANCEL_REPLY = "Okay, never mind. What would you like to know?"

ORDINAL_WORDS = {
    'first': 1, '1st': 1, 'one': 1,
    'second': 2, '2nd': 2, 'two': 2,
    'third': 3, '3rd': 3, 'three': 3,
    'fourth': 4, '4th': 4, 'four': 4,
    'fifth': 5, '5th': 5, 'five': 5,
}

# Words that may surround an ordinal without changing it: "the second one", "number 2 please"
ORDINAL_FILLER = frozenset({
    'the', 'one', 'please', 'option', 'number', 'no', 'choice', 'pick', 'i', 'mean', 'meant', 'want', 'that',
    'is', 'it', 'item', 'ok', 'okay', 'yes'
})

CANCEL_PHRASES = frozenset({'no', 'cancel', 'never mind', 'nevermind', 'forget it', 'none', 'none of them', 'none of those'})


class DisambiguationState(str, Enum):
    IDLE = 'idle'
    AWAITING_PICK = 'awaiting_pick'


def ordinal_index(utterance: str) -> Optional[int]:
    """1-based position named by an ordinal word or a number, fillers aside.

    Anything else left in the text ('2 mile creek') means it is not a position.
    """
    toks = tokens(utterance)
    content = [t for t in toks if t not in ORDINAL_FILLER]
    if not content and 'one' in toks:
        return 1
    if len(content) == 1:
        word = content[0]
        if word in ORDINAL_WORDS:
            return ORDINAL_WORDS[word]
        if word.isdigit() and len(word) <= 2:
            return int(word)
    return None


def select_candidate(candidates: Sequence[Candidate], utterance: str) -> int:
    """Index of the single candidate the utterance picks.

    Tried in order: an ordinal within range, an exact case-insensitive label,
    then a substring match either way.

    Raises:
        AmbiguousNoPick: If no stage narrows the list to exactly one candidate
    """
    position = ordinal_index(utterance)
    if position is not None and 1 <= position <= len(candidates):
        return position - 1

    wanted = (utterance or '').strip().casefold()
    wanted_norm = normalize(utterance)
    if not wanted_norm:
        raise AmbiguousNoPick(utterance, 0)

    exact = [i for i, c in enumerate(candidates)
             if c.name.strip().casefold() == wanted or normalize(c.name) == wanted_norm]
    if len(exact) == 1:
        return exact[0]
    if len(exact) > 1:
        raise AmbiguousNoPick(utterance, len(exact))

    partial = []
    for i, candidate in enumerate(candidates):
        name_norm = normalize(candidate.name)
        if name_norm and (wanted_norm in name_norm or name_norm in wanted_norm):
            partial.append(i)
    if len(partial) == 1:
        return partial[0]
    raise AmbiguousNoPick(utterance, len(partial))


def is_cancel(utterance: str) -> bool:
    return normalize(utterance) in CANCEL_PHRASES


def to_candidates(items: Sequence[Union[Match, Candidate]]) -> List[Candidate]:
    out = []
    for item in items:
        if isinstance(item, Candidate):
            out.append(item)
        else:
            out.append(Candidate(id=item.id, name=item.label, score=round(item.score, 3)))
    return out


def render_question(pending: PendingDisambiguation) -> str:
    options = [f'{i}) {c.name}' for i, c in enumerate(pending.candidates, start=1)]
    return '\n'.join([QUESTION_HEADER, *options, '', QUESTION_FOOTER])


class DisambiguationStateMachine:
    """Ask-then-pick flow over per-thread pending candidate lists."""

    def __init__(self, memory: ConversationMemoryStore, handler: DomainHandler, clock: Optional[Clock] = None):
        self.memory = memory
        self.handler = handler
        self.clock = clock

    def state(self, thread_id: str) -> DisambiguationState:
        if self.memory.get_pending(thread_id) is None:
            return DisambiguationState.IDLE
        return DisambiguationState.AWAITING_PICK

    def ask(self, thread_id: str, kind: str, query: str, candidates: Sequence[Union[Match, Candidate]],
            original_text: str) -> str:
        """Store a pending disambiguation (replacing any earlier one) and return the question."""
        pending = PendingDisambiguation(kind=kind,
                                        query=query,
                                        candidates=tuple(to_candidates(candidates)),
                                        original_text=original_text,
                                        created_at=now_seconds(self.clock))
        self.memory.set_pending(thread_id, pending)
        logger.debug(f'Thread {thread_id} awaiting pick among {len(pending.candidates)} {kind}')
        return render_question(pending)

    def handle_followup(self, thread_id: str, utterance: str) -> FollowupResult:
        """Interpret ``utterance`` as a pick against the thread's pending list.

        Unmatched or ambiguous replies keep the pending list and repeat the
        question. ``handled=False`` only when nothing is pending.
        """
        pending = self.memory.get_pending(thread_id)
        if pending is None:
            return FollowupResult(handled=False)

        if is_cancel(utterance):
            self.memory.clear_pending(thread_id)
            logger.debug(f'Thread {thread_id} cancelled disambiguation')
            return FollowupResult(handled=True, answer=CANCEL_REPLY)

        try:
            index = select_candidate(pending.candidates, utterance)
        except AmbiguousNoPick as e:
            logger.debug(f'Thread {thread_id}: {e}; asking again')
            return FollowupResult(handled=True, answer=render_question(pending))

        chosen = pending.candidates[index]
        if not self.memory.take_pending(thread_id, pending, (pending.kind, chosen)):
            # A concurrent request replaced or consumed the list first
            current = self.memory.get_pending(thread_id)
            if current is None:
                return FollowupResult(handled=False)
            return FollowupResult(handled=True, answer=render_question(current))

        logger.debug(f'Thread {thread_id} picked {chosen.id} ({chosen.name})')
        answer = self.handler(HandlerRequest(thread_id=thread_id,
                                             collection=pending.kind,
                                             entity_id=chosen.id,
                                             label=chosen.name,
                                             original_text=pending.original_text))
        return FollowupResult(handled=True, answer=answer, resolved_id=chosen.id)

    def handle_list_reference(self, thread_id: str, utterance: str) -> FollowupResult:
        """Resolve "the second one" / "number 5" against the last list shown."""
        last_list = self.memory.get_last_list(thread_id)
        if last_list is None or not last_list.items:
            return FollowupResult(handled=False)

        position = ordinal_index(utterance)
        if position is None:
            return FollowupResult(handled=False)
        if not 1 <= position <= len(last_list.items):
            return FollowupResult(handled=True,
                                  answer=f'That list only has {len(last_list.items)} items. '
                                  f'Pick a number from 1 to {len(last_list.items)}.')

        chosen = last_list.items[position - 1]
        self.memory.set_last_selection(thread_id, last_list.kind, chosen)
        answer = self.handler(HandlerRequest(thread_id=thread_id,
                                             collection=last_list.kind,
                                             entity_id=chosen.id,
                                             label=chosen.name,
                                             original_text=utterance))
        return FollowupResult(handled=True, answer=answer, resolved_id=chosen.id)
