"""Tests for label normalization and question cleanup."""

import pytest

from convoresolve.utils.normalize import (acronym, has_numeric_label, is_field_like, normalize, normalize_question,
                                          numeric_prefix, numeric_short, squish, tokens)

SAMPLES = [
    '0801-Lloyd N340',
    '  Swan_Creek!! ',
    'Raymond — South',
    'C-ville / Tower #3',
    '',
    '   ',
    'ÉCOLE du Nord',
]


class TestNormalize:
    """Tests for normalize, squish and tokens."""

    def test_punctuation_and_dashes_become_spaces(self):
        """Dashes, underscores and punctuation collapse to single spaces."""
        assert normalize('0801-Lloyd N340') == '0801 lloyd n340'
        assert normalize('  Swan_Creek!! ') == 'swan creek'
        assert normalize('Raymond — South') == 'raymond south'

    @pytest.mark.parametrize('value', SAMPLES)
    def test_idempotent(self, value):
        """Normalizing twice gives the same result as once."""
        once = normalize(value)
        assert normalize(once) == once

    def test_empty_inputs(self):
        """Empty and whitespace-only strings normalize to ''."""
        assert normalize('') == ''
        assert normalize('   ') == ''
        assert normalize(None) == ''

    def test_squish_removes_spaces(self):
        """squish drops every space from the normalized form."""
        assert squish('Swan Creek') == 'swancreek'
        assert squish('0801-Lloyd N340') == '0801lloydn340'

    def test_tokens(self):
        """tokens splits on spaces and drops empties."""
        assert tokens('C-ville / Tower #3') == ['c', 'ville', 'tower', '3']
        assert tokens('') == []


class TestLabelHelpers:
    """Tests for acronym and numeric prefix helpers."""

    def test_acronym_needs_two_tokens(self):
        """Acronyms shorter than two characters are discarded."""
        assert acronym(['swan', 'creek']) == 'sc'
        assert acronym(['swan']) == ''
        assert acronym([]) == ''

    def test_numeric_prefix(self):
        """Three or four leading digits form the prefix."""
        assert numeric_prefix('0515-Grandma') == '0515'
        assert numeric_prefix('110 North') == '110'
        assert numeric_prefix('Grandma 0515') == ''
        assert numeric_prefix('12345-Wide') == ''

    def test_numeric_short(self):
        """The integer form drops leading zeros."""
        assert numeric_short('0515') == '515'
        assert numeric_short('0801') == '801'
        assert numeric_short('abc') == ''

    def test_numeric_label_shapes(self):
        """Numeric-prefixed labels and bare codes are field-like."""
        assert has_numeric_label('0801-Lloyd N340')
        assert not has_numeric_label('Lloyd 0801')
        assert is_field_like('0801')
        assert is_field_like('0801 - Lloyd')
        assert not is_field_like('how many fields')


class TestNormalizeQuestion:
    """Tests for chat input cleanup."""

    def test_paging_phrases(self):
        """Paging phrasings collapse to the canonical commands."""
        assert normalize_question('show me more').text == 'more'
        assert normalize_question('Next').text == 'more'
        assert normalize_question('list all').text == 'show all'
        assert normalize_question('the rest').text == 'show all'

    def test_typo_rules(self):
        """Common domain typos are fixed and reported."""
        result = normalize_question('how mans feild acers')
        assert result.text == 'how many field acres'
        assert result.changed
        assert {'how_mans', 'field_typo', 'acres_typo'} <= set(result.rules)

    def test_field_like_text_is_not_rewritten(self):
        """Labels that look like field codes keep their spelling."""
        result = normalize_question('0801-feild')
        assert result.text == '0801-feild'
        assert not result.changed

    def test_whitespace_and_punctuation(self):
        """Runs of spaces collapse and spaces before ? are removed."""
        result = normalize_question('where   is it ?')
        assert result.text == 'where is it?'
        assert 'ws_collapse' in result.rules
        assert 'punct_space' in result.rules

    def test_empty(self):
        """Empty input yields empty, unchanged text."""
        result = normalize_question('   ')
        assert result.text == ''
        assert not result.changed
