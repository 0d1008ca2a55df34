"""Tests for the resolver and its confidence policy."""

import sqlite3

import pytest

from convoresolve.models.core import Match, ResolveOutcome
from convoresolve.models.errors import IndexUnavailable, MissingQuery, UnknownCollection
from convoresolve.services.alias_index import AliasIndexBuilder
from convoresolve.services.resolver import (EntityResolver, SqliteCandidateStore, apply_confidence_policy,
                                            build_like_patterns, sort_matches)


def ranked(*scores):
    return [Match(id=f'id-{i}', collection='farms', score=s, label=f'Label {i}') for i, s in enumerate(scores)]


@pytest.fixture
def index(snapshot, clock):
    return AliasIndexBuilder(clock=clock).build(snapshot)


@pytest.fixture
def resolver(app_config):
    return EntityResolver(app_config.resolver)


@pytest.fixture
def store():
    connection = sqlite3.connect(':memory:')
    connection.execute('CREATE TABLE fields (id TEXT, name TEXT)')
    connection.executemany('INSERT INTO fields VALUES (?, ?)', [
        ('fld-0801', '0801-Lloyd N340'),
        ('fld-0802', '0802-Lloyd South'),
        ('fld-0515', '0515-Grandma Home'),
        ('fld-0999', None),
    ])
    yield SqliteCandidateStore(connection)
    connection.close()


class TestConfidencePolicy:
    """Tests for apply_confidence_policy."""

    @pytest.mark.parametrize('scores', [(0.90, 0.60), (0.84, 0.70), (0.88, 0.87), (0.83,), (0.95, 0.95),
                                        (1.0, 1.0, 0.5)])
    def test_accepts(self, app_config, scores):
        """High scores, even when tied, or medium scores with a clear lead, are accepted."""
        match, candidates = apply_confidence_policy(ranked(*scores), app_config.resolver, 12)
        assert match is not None
        assert match.id == 'id-0'
        assert candidates == []

    @pytest.mark.parametrize('scores', [(0.84, 0.80), (0.70, 0.10), (0.85, 0.85)])
    def test_returns_list(self, app_config, scores):
        """Small margins and low scores produce a candidate list."""
        match, candidates = apply_confidence_policy(ranked(*scores), app_config.resolver, 12)
        assert match is None
        assert [c.score for c in candidates] == list(scores)

    def test_margin_boundary(self, app_config):
        """A lead of exactly the minimum margin is enough."""
        match, _ = apply_confidence_policy(ranked(0.82, 0.76), app_config.resolver, 12)
        assert match is not None

    def test_limit(self, app_config):
        """The candidate list is cut to the limit."""
        _, candidates = apply_confidence_policy(ranked(*[0.5] * 30), app_config.resolver, 5)
        assert len(candidates) == 5

    def test_nothing_scored(self, app_config):
        """Zero scores give neither a match nor candidates."""
        assert apply_confidence_policy(ranked(0.0, 0.0), app_config.resolver, 12) == (None, [])
        assert apply_confidence_policy([], app_config.resolver, 12) == (None, [])

    def test_sort_matches_is_stable_on_ties(self):
        """Equal scores are ordered by label then id."""
        matches = [
            Match(id='b', collection='c', score=0.5, label='Zeta'),
            Match(id='a', collection='c', score=0.5, label='alpha'),
            Match(id='c', collection='c', score=0.9, label='Mid'),
        ]
        assert [m.id for m in sort_matches(matches)] == ['c', 'a', 'b']

    def test_sort_matches_prefers_exact_label(self):
        """On equal scores the label equal to the query comes first."""
        matches = [
            Match(id='x', collection='c', score=1.0, label='Alpha Raymond'),
            Match(id='y', collection='c', score=1.0, label='Raymond'),
        ]
        assert [m.id for m in sort_matches(matches)] == ['x', 'y']
        assert [m.id for m in sort_matches(matches, 'RAYMOND')] == ['y', 'x']


class TestResolve:
    """Tests for EntityResolver.resolve against the alias index."""

    def test_exact_match(self, resolver, index):
        """An exact name resolves to that record."""
        result = resolver.resolve(index, 'barlow', 'farms')
        assert result.outcome == ResolveOutcome.MATCH
        assert result.match.id == 'farm-barlow'
        assert result.version_tag == 'snap:v1'
        assert result.to_dict()['match'] == {'id': 'farm-barlow', 'label': 'Barlow', 'score': 1.0}

    def test_numeric_codes(self, resolver, index):
        """Field codes resolve with and without leading zeros."""
        assert resolver.resolve(index, '0801', 'fields').match.id == 'fld-0801'
        assert resolver.resolve(index, '515', 'fields').match.id == 'fld-0515'

    def test_full_label_wins_tie(self, resolver, index):
        """An exact full name resolves even when it is also a word of another label."""
        result = resolver.resolve(index, 'raymond', 'rtkTowers')
        assert result.outcome == ResolveOutcome.MATCH
        assert result.match.id == 'twr-2'

    def test_misspelled_shared_word_asks(self, resolver, index):
        """A typo scoring equally against two labels produces a list."""
        result = resolver.resolve(index, 'raymnd', 'rtkTowers')
        assert result.outcome == ResolveOutcome.CLARIFY
        assert result.match is None
        assert [c.id for c in result.candidates[:2]] == ['twr-2', 'twr-3']

    def test_inactive_records(self, resolver, index):
        """Archived records are hidden unless asked for."""
        hidden = resolver.resolve(index, 'old mill', 'farms')
        assert hidden.match is None or hidden.match.id != 'farm-old'
        assert all(c.id != 'farm-old' for c in hidden.candidates)

        shown = resolver.resolve(index, 'old mill', 'farms', include_inactive=True)
        assert shown.match.id == 'farm-old'

    def test_no_match(self, resolver, index):
        """Text sharing nothing with any record gives no candidates."""
        result = resolver.resolve(index, 'zzzz', 'farms')
        assert result.outcome == ResolveOutcome.NO_MATCH
        assert result.candidates == []

    def test_empty_collection(self, resolver, index):
        """A known but empty collection never matches."""
        assert resolver.resolve(index, 'anything', 'emptyCollection').outcome == ResolveOutcome.NO_MATCH

    def test_escalate_outcome(self, resolver, index):
        """Inconclusive low scores become ESCALATE when escalation is on."""
        assert resolver.resolve(index, 'zzzz', 'farms', escalate=True).outcome == ResolveOutcome.ESCALATE
        assert resolver.resolve(index, 'barlow', 'farms', escalate=True).outcome == ResolveOutcome.MATCH

    def test_unknown_collection(self, resolver, index):
        """Collections missing from the index are an error."""
        with pytest.raises(UnknownCollection) as excinfo:
            resolver.resolve(index, 'barlow', 'tractors')
        assert excinfo.value.collection == 'tractors'

    @pytest.mark.parametrize('query', ['', '   ', '!!!', None])
    def test_missing_query(self, resolver, index, query):
        """Empty queries are rejected."""
        with pytest.raises(MissingQuery):
            resolver.resolve(index, query, 'farms')

    def test_deterministic(self, resolver, index):
        """Repeated calls give identical results."""
        first = resolver.resolve(index, 'carlin ville', 'rtkTowers')
        second = resolver.resolve(index, 'carlin ville', 'rtkTowers')
        assert first.to_dict() == second.to_dict()

    def test_candidate_limit(self, resolver):
        """Requested limits are clamped to the hard cap."""
        assert resolver.candidate_limit() == 12
        assert resolver.candidate_limit(50) == 20
        assert resolver.candidate_limit(0) == 1


class TestResolveAny:
    """Tests for cross-collection lookup."""

    def test_best_first_across_collections(self, resolver, index):
        """The exact farm ranks above the tower that merely contains the name."""
        matches = resolver.resolve_any(index, 'carlin')
        assert matches[0].id == 'farm-carlin'
        assert any(m.id == 'twr-1' and m.collection == 'rtkTowers' for m in matches)

    def test_limit(self, resolver, index):
        """Results are capped by the limit."""
        assert len(resolver.resolve_any(index, 'a', limit=2)) <= 2


class TestResolveInStore:
    """Tests for index-assisted resolution against SQLite."""

    def test_like_patterns(self):
        """Patterns broaden from the whole phrase to single tokens."""
        assert build_like_patterns('Lloyd N 340') == ['%lloyd%n%340%', '%lloyd%n%', '%lloyd%', '%340%']
        assert build_like_patterns('') == []

    def test_match_from_store(self, resolver, store):
        """An exact label pulled from the store resolves."""
        result = resolver.resolve_in_store(store, '0801 lloyd n340', 'fields')
        assert result.outcome == ResolveOutcome.MATCH
        assert result.match.id == 'fld-0801'

    def test_partial_name_lists_candidates(self, resolver, store):
        """A shared word pulls every row containing it."""
        result = resolver.resolve_in_store(store, 'lloyd', 'fields')
        ids = {c.id for c in result.candidates} | ({result.match.id} if result.match else set())
        assert ids <= {'fld-0801', 'fld-0802'}
        assert ids

    def test_unregistered_collection(self, resolver, store):
        """Only registered collections can be queried."""
        with pytest.raises(UnknownCollection):
            resolver.resolve_in_store(store, 'lloyd', 'tractors')

    def test_store_failure(self, resolver, store):
        """A failing query surfaces as IndexUnavailable."""
        with pytest.raises(IndexUnavailable):
            resolver.resolve_in_store(store, 'barlow', 'farms')
