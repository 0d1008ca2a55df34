"""
Continuation paging: "more" / "show all" follow-ups over a saved result set.

Paging commands are a closed vocabulary and are recognized by fixed phrases,
never by the entity scorer.
"""

import re
from typing import Optional, Sequence, Tuple

from ..models.core import Continuation, PagingResult
from ..utils.config import MemoryConfig
from ..utils.config import config as default_config
from ..utils.logging_config import get_logger
from ..utils.normalize import normalize
from .conversation_memory import ConversationMemoryStore

logger = get_logger(__name__)

MORE_WORDS = frozenset({'more', 'next', 'continue'})
MORE_PHRASES = ('show more', 'keep going', 'the other', 'next page')
ALL_WORDS = frozenset({'all', 'rest', 'remaining'})
ALL_PHRASES = ('show all', 'list all', 'all of them', 'everything', 'the rest', 'show remaining')

# "11 more", "the 11 more farms", "five more"
_N_MORE_RE = re.compile(r'\b(\d{1,3}|one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve)\s+more\b')


def _phrase_re(phrases: Sequence[str]):
    return re.compile(r'\b(?:' + '|'.join(re.escape(p) for p in phrases) + r')\b')


_MORE_PHRASES_RE = _phrase_re(MORE_PHRASES)
_ALL_PHRASES_RE = _phrase_re(ALL_PHRASES)


def wants_all(utterance: str) -> bool:
    text = normalize(utterance)
    if not text:
        return False
    if text in ALL_WORDS:
        return True
    return bool(_ALL_PHRASES_RE.search(text))


def wants_more(utterance: str) -> bool:
    text = normalize(utterance)
    if not text:
        return False
    if text in MORE_WORDS:
        return True
    if _MORE_PHRASES_RE.search(text):
        return True
    return bool(_N_MORE_RE.search(text))


def render_page(title: str, lines: Sequence[str], remaining: int) -> str:
    out = [title] if title else []
    out.extend(lines)
    if remaining:
        out.append(f'…plus {remaining} more.')
    return '\n'.join(out)


class ContinuationPager:
    """Stores whole result sets once and serves them page by page."""

    def __init__(self, memory: ConversationMemoryStore, config: Optional[MemoryConfig] = None):
        self.memory = memory
        self.config = config or default_config.memory

    def clamp_page_size(self, page_size: Optional[int]) -> int:
        size = page_size or self.config.default_page_size
        return max(self.config.min_page_size, min(self.config.max_page_size, int(size)))

    def start(self, thread_id: str, title: str, lines: Sequence[str], page_size: Optional[int] = None) -> str:
        """Render the first page of ``lines`` and save the rest as a continuation."""
        size = self.clamp_page_size(page_size)
        continuation = Continuation(title=title, lines=tuple(lines), offset=0, page_size=size)
        answer, following = self.advance(continuation, show_all=False)
        self.memory.set_continuation(thread_id, following)
        return answer

    def advance(self, continuation: Continuation, show_all: bool) -> Tuple[str, Continuation]:
        """Next page (or every remaining line) and the continuation that follows it."""
        lines = continuation.lines
        offset = max(0, min(len(lines), continuation.offset))
        if show_all:
            page = lines[offset:]
        else:
            page = lines[offset:offset + self.clamp_page_size(continuation.page_size)]
        offset += len(page)

        following = Continuation(title=continuation.title, lines=lines, offset=offset,
                                 page_size=continuation.page_size, kind=continuation.kind)
        return render_page(continuation.title, page, following.remaining), following

    def handle_paging(self, thread_id: str, utterance: str) -> PagingResult:
        """Serve a paging command against the thread's saved continuation.

        ``handled=False`` when the utterance is not a paging command or there
        is nothing saved to page through.
        """
        show_all = wants_all(utterance)
        if not show_all and not wants_more(utterance):
            return PagingResult(handled=False)

        def step(continuation: Continuation):
            answer, following = self.advance(continuation, show_all)
            return (answer, following.remaining == 0), following

        outcome = self.memory.pop_continuation(thread_id, step)
        if outcome is None:
            return PagingResult(handled=False)

        answer, done = outcome
        logger.debug(f'Paged thread {thread_id} ({"all" if show_all else "more"}), done={done}')
        return PagingResult(handled=True, answer=answer, done=done)
