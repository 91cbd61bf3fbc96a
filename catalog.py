import asyncio
import base64
import io
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Protocol, Sequence, Tuple

import requests
from PIL import Image, ImageDraw, ImageFont

from config import CatalogConfig


LOGGER = logging.getLogger("dexpicker.catalog")


class DexPickerError(Exception):
    """Base class for errors raised by this project."""


class TolerableFetchFailure(DexPickerError):
    """A single remote payload could not be turned into a record."""


# =========================
# Domain constants
# =========================
CATEGORIES: Tuple[str, ...] = (
    "normal", "fire", "water", "electric", "grass", "ice", "fighting", "poison", "ground",
    "flying", "psychic", "bug", "rock", "ghost", "dragon", "dark", "steel", "fairy",
)

COLOR_TAGS: Tuple[str, ...] = (
    "black", "blue", "brown", "gray", "green", "pink", "purple", "red", "white", "yellow",
)

FLAG_BABY = "baby"
FLAG_LEGENDARY = "legendary"
FLAG_MYTHICAL = "mythical"
SPECIAL_FLAGS: Tuple[str, ...] = (FLAG_BABY, FLAG_LEGENDARY, FLAG_MYTHICAL)

MAX_GENERATION = 9
MAX_EVOLUTION_DEPTH = 3


@lru_cache(maxsize=4)
def placeholder_sprite(size: int = 80) -> str:
    """Gray square with a "?" as a PNG data URI, used when the API has no sprite."""
    img = Image.new("RGBA", (size, size), (221, 221, 221, 255))
    dr = ImageDraw.Draw(img)
    font = ImageFont.load_default()
    tw = dr.textlength("?", font=font)
    dr.text(((size - tw) / 2, (size - 10) / 2), "?", fill=(153, 153, 153, 255), font=font)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


# =========================
# Models
# =========================
@dataclass(frozen=True)
class EntityReference:
    id: int
    name: str
    locator: str


@dataclass(frozen=True)
class DetailRecord:
    id: int
    canonical_name: str
    sprite_locator: Optional[str]
    categories: Tuple[str, ...]
    species_key: str
    species_locator: str


@dataclass(frozen=True)
class SpeciesRecord:
    localized_names: Mapping[str, str] = field(default_factory=dict)
    is_baby: bool = False
    is_legendary: bool = False
    is_mythical: bool = False
    color_tag: Optional[str] = None
    predecessor_locator: Optional[str] = None

    def flags(self) -> FrozenSet[str]:
        out = set()
        if self.is_baby:
            out.add(FLAG_BABY)
        if self.is_legendary:
            out.add(FLAG_LEGENDARY)
        if self.is_mythical:
            out.add(FLAG_MYTHICAL)
        return frozenset(out)


@dataclass(frozen=True)
class EntityRecord:
    id: int
    canonical_name: str
    localized_names: Mapping[str, str] = field(hash=False)
    image_ref: str
    categories: Tuple[str, ...]
    generation: int = 1
    evolution_depth: int = 1
    flags: FrozenSet[str] = frozenset()
    color_tag: Optional[str] = None

    def __post_init__(self):
        if self.id <= 0:
            raise ValueError(f"entity id must be positive, got {self.id}")
        if len(self.categories) not in (1, 2):
            raise ValueError(f"#{self.id}: expected 1 or 2 categories, got {self.categories!r}")
        if not 1 <= self.evolution_depth <= MAX_EVOLUTION_DEPTH:
            raise ValueError(f"#{self.id}: evolution depth out of range: {self.evolution_depth}")
        if not 1 <= self.generation <= MAX_GENERATION:
            raise ValueError(f"#{self.id}: generation out of range: {self.generation}")
        # Freeze the name mapping so records stay read-only after ingestion.
        object.__setattr__(self, "localized_names", MappingProxyType(dict(self.localized_names)))

    @property
    def category_count(self) -> int:
        return len(self.categories)

    def display_name(self, locale: str) -> str:
        return self.localized_names.get(locale) or self.canonical_name


class LineageIndex:
    """species key -> generation. Missing keys are generation 1."""

    def __init__(self, mapping: Optional[Mapping[str, int]] = None):
        self._map = MappingProxyType(dict(mapping or {}))

    def generation_of(self, species_key: str) -> int:
        return self._map.get(species_key, 1)

    def __len__(self) -> int:
        return len(self._map)

    def __contains__(self, species_key: object) -> bool:
        return species_key in self._map


class Catalog(Sequence[EntityRecord]):
    """Frozen, id-ascending list of records with lookup by id."""

    def __init__(self, records: Iterable[EntityRecord] = ()):
        self._records: Tuple[EntityRecord, ...] = tuple(sorted(records, key=lambda r: r.id))
        self._by_id: Dict[int, EntityRecord] = {r.id: r for r in self._records}
        if len(self._by_id) != len(self._records):
            raise ValueError("catalog ids must be unique")

    def __getitem__(self, index):
        return self._records[index]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[EntityRecord]:
        return iter(self._records)

    def get(self, entity_id: int) -> Optional[EntityRecord]:
        return self._by_id.get(entity_id)

    def ids(self) -> List[int]:
        return [r.id for r in self._records]


# =========================
# Catalog source
# =========================
class CatalogSource(Protocol):
    async def fetch_generation(self, generation: int) -> List[str]:
        ...

    async def list_entity_references(self) -> List[EntityReference]:
        ...

    async def fetch_detail(self, locator: str) -> DetailRecord:
        ...

    async def fetch_species(self, locator: str) -> SpeciesRecord:
        ...


def extract_id_from_url(url: str) -> Optional[int]:
    if not url:
        return None
    m = re.search(r"/(\d+)/?$", url)
    if not m:
        return None
    return int(m.group(1))


class PokeApiSource:
    """
    PokeAPI backed CatalogSource.

    requests is blocking, so every call runs on a private thread pool sized to
    the ingestion batch; the coroutines only await the executor futures.
    """

    def __init__(self, config: Optional[CatalogConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or CatalogConfig()
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = self.config.user_agent
        self._session = session
        self._executor = ThreadPoolExecutor(max_workers=self.config.batch_size, thread_name_prefix="pokeapi")
        self._url_payload_cache: Dict[str, dict] = {}

    def __enter__(self) -> "PokeApiSource":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self._session.close()

    def _fetch_json_url(self, url: str) -> dict:
        cached = self._url_payload_cache.get(url)
        if cached is not None:
            return cached
        LOGGER.debug("GET %s", url)
        r = self._session.get(url, timeout=self.config.request_timeout_sec)
        r.raise_for_status()
        data = r.json()
        self._url_payload_cache[url] = data
        return data

    async def _get(self, url: str) -> dict:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._fetch_json_url, url)

    async def fetch_generation(self, generation: int) -> List[str]:
        data = await self._get(f"{self.config.api_base}/generation/{generation}")
        return [s["name"] for s in data.get("pokemon_species", []) or [] if s.get("name")]

    async def list_entity_references(self) -> List[EntityReference]:
        data = await self._get(f"{self.config.api_base}/pokemon?limit=10000")
        out: List[EntityReference] = []
        for it in data.get("results", []) or []:
            url = it.get("url", "")
            entity_id = extract_id_from_url(url)
            if entity_id is None:
                LOGGER.debug("Skipping reference without numeric id: %s", url)
                continue
            out.append(EntityReference(id=entity_id, name=str(it.get("name", "")), locator=url))
        return out

    async def fetch_detail(self, locator: str) -> DetailRecord:
        return parse_detail(await self._get(locator))

    async def fetch_species(self, locator: str) -> SpeciesRecord:
        return parse_species(await self._get(locator), self.config.supported_locales)


# =========================
# Payload parsing
# =========================
def parse_detail(data: dict) -> DetailRecord:
    try:
        entity_id = int(data["id"])
        name = str(data["name"])
        species = data["species"]
        species_key = str(species["name"])
        species_locator = str(species["url"])
    except (KeyError, TypeError, ValueError) as exc:
        raise TolerableFetchFailure(f"malformed detail payload: {exc!r}") from exc

    ordered = sorted(data.get("types", []) or [], key=lambda t: t.get("slot", 99))
    categories = tuple(t["type"]["name"] for t in ordered if (t.get("type") or {}).get("name"))
    if len(categories) not in (1, 2):
        raise TolerableFetchFailure(f"#{entity_id}: expected 1 or 2 types, got {len(categories)}")

    sprites = data.get("sprites") or {}
    showdown = ((sprites.get("other") or {}).get("showdown") or {}).get("front_default")
    sprite = showdown or sprites.get("front_default") or None

    return DetailRecord(
        id=entity_id,
        canonical_name=name,
        sprite_locator=sprite,
        categories=categories,
        species_key=species_key,
        species_locator=species_locator,
    )


def parse_species(data: dict, locales: Sequence[str]) -> SpeciesRecord:
    wanted = set(locales)
    names: Dict[str, str] = {}
    for row in data.get("names", []) or []:
        lang = str((row.get("language") or {}).get("name", "")).strip().lower()
        value = str(row.get("name", "") or "").strip()
        if lang in wanted and value:
            names[lang] = value

    color = (data.get("color") or {}).get("name") or None
    predecessor = (data.get("evolves_from_species") or {}).get("url") or None

    return SpeciesRecord(
        localized_names=names,
        is_baby=bool(data.get("is_baby", False)),
        is_legendary=bool(data.get("is_legendary", False)),
        is_mythical=bool(data.get("is_mythical", False)),
        color_tag=color,
        predecessor_locator=predecessor,
    )
