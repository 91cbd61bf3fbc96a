"""
Faceted filtering over the ingested catalog.

Every facet holds an explicit tri-state per value (unselected / included /
excluded). ``apply_filters`` is a pure function of (catalog, state, locale)
and always starts from the full catalog.
"""
import enum
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Hashable, Iterable, List, Optional, Tuple

from catalog import CATEGORIES, COLOR_TAGS, MAX_EVOLUTION_DEPTH, MAX_GENERATION, SPECIAL_FLAGS, EntityRecord


class TriState(enum.Enum):
    UNSELECTED = "unselected"
    INCLUDED = "included"
    EXCLUDED = "excluded"

    def next(self) -> "TriState":
        return _CYCLE[self]


_CYCLE = {
    TriState.UNSELECTED: TriState.INCLUDED,
    TriState.INCLUDED: TriState.EXCLUDED,
    TriState.EXCLUDED: TriState.UNSELECTED,
}


FACET_GENERATION = "generation"
FACET_CATEGORY = "category"
FACET_CATEGORY_COUNT = "category_count"
FACET_EVOLUTION_DEPTH = "evolution_depth"
FACET_SPECIAL_FLAG = "special_flag"
FACET_COLOR = "color"

FACET_DOMAINS: Dict[str, Tuple[Hashable, ...]] = {
    FACET_GENERATION: tuple(range(1, MAX_GENERATION + 1)),
    FACET_CATEGORY: CATEGORIES,
    FACET_CATEGORY_COUNT: (1, 2),
    FACET_EVOLUTION_DEPTH: tuple(range(1, MAX_EVOLUTION_DEPTH + 1)),
    FACET_SPECIAL_FLAG: SPECIAL_FLAGS,
    FACET_COLOR: COLOR_TAGS,
}
FACETS: Tuple[str, ...] = tuple(FACET_DOMAINS)

# Facets whose selection can be switched between single and multiple values.
MODE_SWITCHABLE_FACETS: FrozenSet[str] = frozenset({FACET_GENERATION, FACET_CATEGORY})

CATEGORY_MODE_OR = "or"
CATEGORY_MODE_AND = "and"


@dataclass
class FacetSelection:
    """
    Tri-state per value for one facet.

    Values not in ``states`` are unselected. ``order`` remembers when a value
    left the unselected state; cycling included -> excluded keeps that order.
    """
    domain: Tuple[Hashable, ...]
    multi: bool = True
    states: Dict[Hashable, TriState] = field(default_factory=dict)
    order: Dict[Hashable, int] = field(default_factory=dict)
    seq: int = 0

    def _check(self, value: Hashable) -> None:
        if value not in self.domain:
            raise ValueError(f"{value!r} is not a valid value (expected one of {list(self.domain)})")

    def state_of(self, value: Hashable) -> TriState:
        return self.states.get(value, TriState.UNSELECTED)

    @property
    def included(self) -> FrozenSet[Hashable]:
        return frozenset(v for v, s in self.states.items() if s is TriState.INCLUDED)

    @property
    def excluded(self) -> FrozenSet[Hashable]:
        return frozenset(v for v, s in self.states.items() if s is TriState.EXCLUDED)

    def is_ignored(self) -> bool:
        return not self.states

    def set_state(self, value: Hashable, new: TriState) -> None:
        self._check(value)
        if new is TriState.UNSELECTED:
            self.states.pop(value, None)
            self.order.pop(value, None)
            return
        if value not in self.states:
            if not self.multi:
                self.clear()
            self.seq += 1
            self.order[value] = self.seq
        self.states[value] = new

    def cycle(self, value: Hashable) -> TriState:
        self._check(value)
        new = self.state_of(value).next()
        self.set_state(value, new)
        return new

    def clear(self) -> None:
        self.states.clear()
        self.order.clear()

    def set_multi(self, enabled: bool) -> None:
        self.multi = enabled
        if enabled or len(self.states) <= 1:
            return
        # First selected wins; on equal order an included value beats an excluded one.
        keep = min(
            self.states,
            key=lambda v: (self.order.get(v, 0), 0 if self.states[v] is TriState.INCLUDED else 1),
        )
        kept_state, kept_order = self.states[keep], self.order.get(keep, 0)
        self.clear()
        self.states[keep] = kept_state
        self.order[keep] = kept_order


def _facet(name: str, multi: bool = True) -> FacetSelection:
    return FacetSelection(domain=FACET_DOMAINS[name], multi=multi)


@dataclass
class FilterState:
    facets: Dict[str, FacetSelection] = field(default_factory=lambda: {name: _facet(name) for name in FACETS})
    category_mode: str = CATEGORY_MODE_OR
    name_query: str = ""

    def facet(self, name: str) -> FacetSelection:
        try:
            return self.facets[name]
        except KeyError:
            raise ValueError(f"unknown facet {name!r} (expected one of {list(FACETS)})") from None

    def cycle(self, facet: str, value: Hashable) -> TriState:
        """Advance one value: unselected -> included -> excluded -> unselected."""
        return self.facet(facet).cycle(value)

    def set_state(self, facet: str, value: Hashable, state: TriState) -> None:
        self.facet(facet).set_state(value, state)

    def select_all(self, facet: str) -> None:
        self.facet(facet).clear()

    def set_category_mode(self, mode: str) -> None:
        mode = (mode or "").strip().lower()
        if mode not in (CATEGORY_MODE_OR, CATEGORY_MODE_AND):
            raise ValueError(f"category mode must be 'or' or 'and', got {mode!r}")
        self.category_mode = mode

    def set_multi_select(self, facet: str, enabled: bool) -> None:
        if facet not in MODE_SWITCHABLE_FACETS:
            raise ValueError(f"facet {facet!r} has no single/multiple selection mode")
        self.facet(facet).set_multi(enabled)

    def step_category_count(self) -> Optional[int]:
        """Single-button cycle: both -> single -> dual -> both. Returns the included count or None."""
        sel = self.facet(FACET_CATEGORY_COUNT)
        current = sel.included
        sel.clear()
        if not current:
            sel.set_state(1, TriState.INCLUDED)
            return 1
        if current == {1}:
            sel.set_state(2, TriState.INCLUDED)
            return 2
        return None

    def reset(self) -> None:
        for sel in self.facets.values():
            sel.clear()
        self.category_mode = CATEGORY_MODE_OR
        self.name_query = ""

    def is_default(self) -> bool:
        return (
            all(sel.is_ignored() for sel in self.facets.values())
            and self.category_mode == CATEGORY_MODE_OR
            and not self.name_query
        )


# =========================
# Engine
# =========================
Predicate = Callable[[EntityRecord], bool]


def _name_predicate(query: str, locale: str) -> Optional[Predicate]:
    q = (query or "").casefold()
    if not q:
        return None

    def match(p: EntityRecord) -> bool:
        return q in p.display_name(locale).casefold() or q in p.canonical_name.casefold()

    return match


def _value_facet(included: FrozenSet, excluded: FrozenSet, key: Callable[[EntityRecord], object]) -> List[Predicate]:
    out: List[Predicate] = []
    if included:
        out.append(lambda p: key(p) in included)
    if excluded:
        out.append(lambda p: key(p) not in excluded)
    return out


def _category_predicates(sel: FacetSelection, mode: str) -> List[Predicate]:
    out: List[Predicate] = []
    included, excluded = sel.included, sel.excluded
    if included:
        if mode == CATEGORY_MODE_AND:
            out.append(lambda p: included.issubset(p.categories))
        else:
            out.append(lambda p: not included.isdisjoint(p.categories))
    if excluded:
        out.append(lambda p: excluded.isdisjoint(p.categories))
    return out


def _flag_predicates(sel: FacetSelection) -> List[Predicate]:
    out: List[Predicate] = []
    included, excluded = sel.included, sel.excluded
    if included:
        out.append(lambda p: not included.isdisjoint(p.flags))
    if excluded:
        out.append(lambda p: excluded.isdisjoint(p.flags))
    return out


def _color_predicates(sel: FacetSelection) -> List[Predicate]:
    out: List[Predicate] = []
    included, excluded = sel.included, sel.excluded
    if included:
        out.append(lambda p: p.color_tag is not None and p.color_tag in included)
    if excluded:
        out.append(lambda p: p.color_tag is None or p.color_tag not in excluded)
    return out


def build_predicates(state: FilterState, locale: str = "en") -> List[Predicate]:
    preds: List[Predicate] = []
    name = _name_predicate(state.name_query, locale)
    if name is not None:
        preds.append(name)

    gen = state.facet(FACET_GENERATION)
    preds += _value_facet(gen.included, gen.excluded, lambda p: p.generation)
    preds += _category_predicates(state.facet(FACET_CATEGORY), state.category_mode)
    count = state.facet(FACET_CATEGORY_COUNT)
    preds += _value_facet(count.included, count.excluded, lambda p: p.category_count)
    depth = state.facet(FACET_EVOLUTION_DEPTH)
    preds += _value_facet(depth.included, depth.excluded, lambda p: p.evolution_depth)
    preds += _flag_predicates(state.facet(FACET_SPECIAL_FLAG))
    preds += _color_predicates(state.facet(FACET_COLOR))
    return preds


def apply_filters(catalog: Iterable[EntityRecord], state: FilterState, locale: str = "en") -> List[EntityRecord]:
    preds = build_predicates(state, locale)
    return [p for p in catalog if all(pred(p) for pred in preds)]
