import logging
import random
from dataclasses import dataclass, field
from typing import List, Optional, Set

from catalog import Catalog, EntityRecord
from config import Preferences
from filters import FilterState, apply_filters


LOGGER = logging.getLogger("dexpicker.session")


@dataclass
class SelectionState:
    disabled_ids: Set[int] = field(default_factory=set)
    chosen_id: Optional[int] = None

    def toggle_disabled(self, entity_id: int) -> bool:
        """Flip ``entity_id`` in the disabled set. Returns True when it is now disabled."""
        if entity_id in self.disabled_ids:
            self.disabled_ids.discard(entity_id)
            return False
        self.disabled_ids.add(entity_id)
        return True

    def choose(self, entity_id: int) -> Optional[int]:
        # Choosing the current pick again un-chooses it; anything else overwrites.
        self.chosen_id = None if self.chosen_id == entity_id else entity_id
        return self.chosen_id

    def clear(self) -> None:
        self.disabled_ids.clear()
        self.chosen_id = None


class Session:
    """
    One user session over a frozen catalog.

    Owns the mutable FilterState / SelectionState / Preferences and the list
    currently displayed. The catalog itself is never modified.
    """

    def __init__(
        self,
        catalog: Catalog,
        preferences: Optional[Preferences] = None,
        rng: Optional[random.Random] = None,
    ):
        self.catalog = catalog
        self.preferences = preferences or Preferences()
        self.filters = FilterState()
        self.selection = SelectionState()
        self._rng = rng or random.Random()
        self.displayed: List[EntityRecord] = list(catalog)

    # ---------- Filtering ----------
    def refresh(self) -> List[EntityRecord]:
        self.displayed = apply_filters(self.catalog, self.filters, self.preferences.locale)
        return self.displayed

    def set_locale(self, locale: str) -> None:
        self.preferences.locale = str(locale)

    def set_theme(self, theme: str) -> None:
        self.preferences.theme = str(theme)

    # ---------- Selection ----------
    def toggle_disabled(self, entity_id: int) -> bool:
        return self.selection.toggle_disabled(entity_id)

    def choose(self, entity_id: int) -> Optional[int]:
        return self.selection.choose(entity_id)

    def available(self) -> List[EntityRecord]:
        disabled = self.selection.disabled_ids
        return [p for p in self.displayed if p.id not in disabled]

    def choose_random(self) -> Optional[int]:
        candidates = self.available()
        if not candidates:
            LOGGER.debug("Random pick skipped: nothing displayed and enabled")
            return None
        picked = self._rng.choice(candidates)
        self.choose(picked.id)
        return picked.id

    def remaining_count(self) -> int:
        return len(self.available())

    def chosen_record(self) -> Optional[EntityRecord]:
        if self.selection.chosen_id is None:
            return None
        return self.catalog.get(self.selection.chosen_id)

    def reset(self) -> List[EntityRecord]:
        self.selection.clear()
        self.filters.reset()
        return self.refresh()
