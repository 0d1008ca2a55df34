"""
Error taxonomy for entity resolution, disambiguation and escalation.
"""

from typing import Optional


class ResolutionError(Exception):
    """Base exception for resolver errors."""
    pass


class MissingQuery(ResolutionError):
    """The query was empty or whitespace only."""
    pass


class UnknownCollection(ResolutionError):
    """The requested collection is not present in the alias index."""

    def __init__(self, collection: str):
        super().__init__(f'Unknown collection: {collection!r}')
        self.collection = collection


class IndexUnavailable(ResolutionError):
    """The snapshot is not loaded or is malformed; the caller should reload it."""

    def __init__(self, reason: str, version_tag: Optional[str] = None):
        detail = f' (version {version_tag})' if version_tag else ''
        super().__init__(f'Alias index unavailable: {reason}{detail}')
        self.reason = reason
        self.version_tag = version_tag


class AmbiguousNoPick(ResolutionError):
    """A disambiguation reply matched zero or several candidates."""

    def __init__(self, utterance: str, matched: int):
        super().__init__(f'Reply {utterance!r} matched {matched} candidates')
        self.utterance = utterance
        self.matched = matched


class EscalationError(ResolutionError):
    """Base exception for the escalation collaborator."""
    pass


class EscalationInvalid(EscalationError):
    """The collaborator returned malformed output or a value outside the candidate list."""
    pass


class EscalationUnavailable(EscalationError):
    """The collaborator could not be reached or is saturated."""
    pass
