"""
Label and question normalization.

Every function here is pure: the same input always yields the same output.
"""

import re
from dataclasses import dataclass, field
from typing import List, Pattern, Sequence, Tuple

_NON_WORD_RE = re.compile(r'[\W_]+')
_SPACE_RE = re.compile(r'\s+')
_NUMERIC_PREFIX_RE = re.compile(r'^(\d{3,4})\b')
_NUMERIC_LABEL_RE = re.compile(r'^\s*\d{3,4}\s*[-–—]')
_FIELD_LIKE_RE = re.compile(r'^\s*\d{3,4}\s*(?:[-–—]\s*.+)?$')


def normalize(value: str) -> str:
    """Lowercase, turn punctuation and dashes into spaces, collapse whitespace."""
    if not value:
        return ''
    return _SPACE_RE.sub(' ', _NON_WORD_RE.sub(' ', str(value).lower())).strip()


def squish(value: str) -> str:
    """Normalized form with all whitespace removed."""
    return normalize(value).replace(' ', '')


def tokens(value: str) -> List[str]:
    """Non-empty tokens of the normalized form."""
    return [t for t in normalize(value).split(' ') if t]


def acronym(toks: Sequence[str]) -> str:
    """Initials of the tokens, or '' when shorter than two characters."""
    initials = ''.join(t[0] for t in toks if t)
    return initials if len(initials) >= 2 else ''


def numeric_prefix(label: str) -> str:
    """Leading 3-4 digit code of a label such as ``0515-Grandma``."""
    match = _NUMERIC_PREFIX_RE.match((label or '').strip())
    return match.group(1) if match else ''


def numeric_short(prefix: str) -> str:
    """Integer form of a numeric prefix: ``0515`` -> ``515``."""
    if not re.fullmatch(r'\d{3,4}', prefix or ''):
        return ''
    return str(int(prefix))


def has_numeric_label(label: str) -> bool:
    """True for labels shaped like ``0801-Lloyd N340``."""
    return bool(_NUMERIC_LABEL_RE.match(label or ''))


def is_field_like(text: str) -> bool:
    """True for a bare 3-4 digit code or a numeric-prefixed label."""
    return bool(_FIELD_LIKE_RE.match(text or ''))


# ---------------------------------------------------------------------------
# Question normalization
# ---------------------------------------------------------------------------

Rule = Tuple[str, Pattern, str]

_PAGING_RULES: Tuple[Rule, ...] = (
    ('paging_show_more', re.compile(r'^\s*show\s+(me\s+)?more\s*$', re.I), 'more'),
    ('paging_more_pls', re.compile(r'^\s*more\s+please\s*$', re.I), 'more'),
    ('paging_show_all', re.compile(r'^\s*show\s+(me\s+)?all\s*$', re.I), 'show all'),
    ('paging_all_pls', re.compile(r'^\s*show\s+(me\s+)?all\s+please\s*$', re.I), 'show all'),
    ('paging_list_all', re.compile(r'^\s*list\s+all\s*$', re.I), 'show all'),
    ('paging_next', re.compile(r'^\s*next\s*$', re.I), 'more'),
    ('paging_rest', re.compile(r'^\s*(the\s+)?rest\s*$', re.I), 'show all'),
)

# Only applied when the text does not look like a field label
_TYPO_RULES: Tuple[Rule, ...] = (
    ('how_mans', re.compile(r'\bhow\s+mans\b', re.I), 'how many'),
    ('how_man', re.compile(r'\bhow\s+man\b', re.I), 'how many'),
    ('rtk_typo_rkt', re.compile(r'\brkt\b', re.I), 'rtk'),
    ('rtk_plural', re.compile(r'\brtks\b', re.I), 'rtk'),
    ('tower_typo', re.compile(r'\btowre\b', re.I), 'tower'),
    ('county_typo', re.compile(r'\bconty\b', re.I), 'county'),
    ('field_typo', re.compile(r'\bfeild\b', re.I), 'field'),
    ('acres_typo', re.compile(r'\bacers\b', re.I), 'acres'),
    ('tillable_typo', re.compile(r'\btilable\b', re.I), 'tillable'),
)


@dataclass
class NormalizedQuestion:
    """Cleaned user text plus the ids of the rewrite rules that fired."""
    text: str
    changed: bool
    rules: List[str] = field(default_factory=list)


def _apply_rules(text: str, rules: Sequence[Rule], fired: List[str]) -> str:
    for rule_id, pattern, replacement in rules:
        rewritten = pattern.sub(replacement, text)
        if rewritten != text:
            text = rewritten
            fired.append(rule_id)
    return text


def normalize_question(raw: str) -> NormalizedQuestion:
    """Tidy raw chat input without touching field-like labels."""
    original = (raw or '').strip()
    if not original:
        return NormalizedQuestion(text='', changed=False)

    fired: List[str] = []
    text = _SPACE_RE.sub(' ', original)
    if text != original:
        fired.append('ws_collapse')

    text = _apply_rules(text, _PAGING_RULES, fired)

    if not is_field_like(text):
        text = _apply_rules(text, _TYPO_RULES, fired)

    tidy = re.sub(r'\s+([?.])', r'\1', text).strip()
    if tidy != text:
        text = tidy
        fired.append('punct_space')

    return NormalizedQuestion(text=text, changed=text != original, rules=fired)
