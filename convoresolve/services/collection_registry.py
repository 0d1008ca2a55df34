"""
Registry of known entity collections.

One entry per collection: where it lives in the backing store, whether its
labels carry numeric prefixes, and the refinements a follow-up such as
"include acres" can ask for once a list of that collection is on screen.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ..utils.normalize import normalize


@dataclass(frozen=True)
class Refinement:
    """A named follow-up on a listed collection, triggered by keywords."""
    key: str
    keywords: Tuple[str, ...]


@dataclass(frozen=True)
class CollectionSpec:
    """Metadata for one entity collection."""
    name: str
    table: str
    id_col: str = 'id'
    name_col: str = 'name'
    numeric_labels: bool = False
    refinements: Tuple[Refinement, ...] = ()


DEFAULT_COLLECTIONS: Tuple[CollectionSpec, ...] = (
    CollectionSpec(name='farms',
                   table='farms',
                   refinements=(
                       Refinement(key='include_tillable_acres',
                                  keywords=('include acres', 'with acres', 'include tillable', 'include tillable acres',
                                            'add acres', 'add tillable')),
                       Refinement(key='include_field_count',
                                  keywords=('field count', 'how many fields', 'include field count', 'add field count')),
                   )),
    CollectionSpec(name='fields', table='fields', numeric_labels=True),
    CollectionSpec(name='rtkTowers', table='rtkTowers'),
)


@dataclass
class CollectionRegistry:
    """Lookup of collection metadata by name."""
    specs: Dict[str, CollectionSpec] = field(default_factory=dict)

    @classmethod
    def from_specs(cls, specs: Iterable[CollectionSpec]) -> 'CollectionRegistry':
        return cls(specs={spec.name: spec for spec in specs})

    @classmethod
    def default(cls) -> 'CollectionRegistry':
        return cls.from_specs(DEFAULT_COLLECTIONS)

    def get(self, name: str) -> Optional[CollectionSpec]:
        return self.specs.get((name or '').strip())

    def names(self) -> List[str]:
        return list(self.specs)

    def numeric_collections(self) -> Mapping[str, bool]:
        return {name: spec.numeric_labels for name, spec in self.specs.items()}

    def detect_refinement(self, collection: str, text: str) -> Optional[str]:
        """Key of the first refinement whose keyword occurs in ``text``."""
        spec = self.get(collection)
        if spec is None:
            return None

        haystack = normalize(text)
        if not haystack:
            return None
        for refinement in spec.refinements:
            if any(normalize(keyword) in haystack for keyword in refinement.keywords):
                return refinement.key
        return None
