from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Sequence, Set

import pytest

from catalog import Catalog, DetailRecord, EntityRecord, EntityReference, SpeciesRecord
from config import CatalogConfig


class FakeSource:
    """In-memory CatalogSource. Locators are plain strings: "detail/<id>", "species/<key>"."""

    def __init__(self, generation_count: int = 9):
        self.generations: Dict[int, List[str]] = {g: [] for g in range(1, generation_count + 1)}
        self.references: List[EntityReference] = []
        self.details: Dict[str, DetailRecord] = {}
        self.species: Dict[str, SpeciesRecord] = {}
        self.fail_generations: Set[int] = set()
        self.fail_locators: Set[str] = set()
        self.fail_list = False
        self.events: List[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def add_species(
        self,
        key: str,
        predecessor: Optional[str] = None,
        names: Optional[Dict[str, str]] = None,
        color: Optional[str] = None,
        baby: bool = False,
        legendary: bool = False,
        mythical: bool = False,
    ) -> str:
        locator = f"species/{key}"
        self.species[locator] = SpeciesRecord(
            localized_names=names or {},
            is_baby=baby,
            is_legendary=legendary,
            is_mythical=mythical,
            color_tag=color,
            predecessor_locator=f"species/{predecessor}" if predecessor else None,
        )
        return locator

    def add_entity(
        self,
        entity_id: int,
        name: str,
        categories: Sequence[str] = ("normal",),
        generation: Optional[int] = 1,
        sprite: Optional[str] = "https://img.example/{id}.png",
        **species_kwargs,
    ) -> str:
        species_locator = self.add_species(name, **species_kwargs)
        locator = f"detail/{entity_id}"
        self.details[locator] = DetailRecord(
            id=entity_id,
            canonical_name=name,
            sprite_locator=sprite.format(id=entity_id) if sprite else None,
            categories=tuple(categories),
            species_key=name,
            species_locator=species_locator,
        )
        self.references.append(EntityReference(id=entity_id, name=name, locator=locator))
        if generation is not None:
            self.generations.setdefault(generation, []).append(name)
        return locator

    async def _hop(self, kind: str, key) -> None:
        self.events.append((kind, key))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
        finally:
            self.in_flight -= 1

    async def fetch_generation(self, generation: int) -> List[str]:
        await self._hop("generation", generation)
        if generation in self.fail_generations:
            raise ConnectionError(f"generation {generation} unavailable")
        return list(self.generations.get(generation, []))

    async def list_entity_references(self) -> List[EntityReference]:
        await self._hop("list", None)
        if self.fail_list:
            raise ConnectionError("list unavailable")
        return list(self.references)

    async def fetch_detail(self, locator: str) -> DetailRecord:
        await self._hop("detail", locator)
        if locator in self.fail_locators:
            raise ConnectionError(f"{locator} unavailable")
        return self.details[locator]

    async def fetch_species(self, locator: str) -> SpeciesRecord:
        await self._hop("species", locator)
        if locator in self.fail_locators:
            raise ConnectionError(f"{locator} unavailable")
        return self.species[locator]


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def small_config() -> CatalogConfig:
    return CatalogConfig(batch_size=30, max_entity_id=1025, generation_count=9)


def make_record(
    entity_id: int,
    name: str = "",
    categories: Sequence[str] = ("normal",),
    generation: int = 1,
    evolution_depth: int = 1,
    flags: Sequence[str] = (),
    color_tag: Optional[str] = None,
    names: Optional[Dict[str, str]] = None,
) -> EntityRecord:
    return EntityRecord(
        id=entity_id,
        canonical_name=name or f"mon-{entity_id}",
        localized_names=names or {},
        image_ref=f"https://img.example/{entity_id}.png",
        categories=tuple(categories),
        generation=generation,
        evolution_depth=evolution_depth,
        flags=frozenset(flags),
        color_tag=color_tag,
    )


@pytest.fixture
def sample_catalog() -> Catalog:
    return Catalog(
        [
            make_record(1, "bulbasaur", ("grass", "poison"), 1, 1, color_tag="green",
                        names={"de": "Bisasam", "ja": "フシギダネ"}),
            make_record(2, "ivysaur", ("grass", "poison"), 1, 2, color_tag="green"),
            make_record(4, "charmander", ("fire",), 1, 1, color_tag="red", names={"fr": "Salamèche"}),
            make_record(6, "charizard", ("fire", "flying"), 1, 3, color_tag="red"),
            make_record(144, "articuno", ("ice", "flying"), 1, 1, flags=("legendary",), color_tag="blue"),
            make_record(151, "mew", ("psychic",), 1, 1, flags=("mythical",), color_tag="pink"),
            make_record(172, "pichu", ("electric",), 2, 1, flags=("baby",), color_tag="yellow"),
            make_record(25, "pikachu", ("electric",), 1, 2, color_tag="yellow"),
            make_record(132, "ditto", ("normal",), 1, 1),
        ]
    )
