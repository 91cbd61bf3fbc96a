"""
Catalog ingestion.

Drives a CatalogSource to a sorted, frozen Catalog:

1. lineage index, one request per generation, all concurrent
2. the full reference list (the only fatal step)
3. sequential batches of concurrent detail -> species -> predecessor lookups

Failed generations and failed entities are logged and skipped.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from catalog import (
    MAX_EVOLUTION_DEPTH,
    Catalog,
    CatalogSource,
    DexPickerError,
    EntityRecord,
    EntityReference,
    LineageIndex,
    placeholder_sprite,
)
from config import CatalogConfig


LOGGER = logging.getLogger("dexpicker.ingest")

ProgressCallback = Callable[[float, str], None]

PROGRESS_LINEAGE = 10.0
PROGRESS_LIST_START = 15.0
PROGRESS_LIST_DONE = 20.0
PROGRESS_BATCH_SPAN = 75.0


class FatalIngestionError(DexPickerError):
    """The reference list could not be fetched; there is no catalog to build."""


@dataclass
class IngestionDiagnostics:
    failed_generations: List[int] = field(default_factory=list)
    dropped_references: List[int] = field(default_factory=list)
    skipped_out_of_range: int = 0
    batches: int = 0

    @property
    def is_partial(self) -> bool:
        return bool(self.failed_generations or self.dropped_references)


@dataclass
class IngestionResult:
    catalog: Catalog
    lineage: LineageIndex
    diagnostics: IngestionDiagnostics


def _noop_progress(percent: float, message: str) -> None:
    pass


def make_batches(items: Sequence, size: int) -> List[list]:
    if size < 1:
        raise ValueError("batch size must be >= 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class IngestionPipeline:
    def __init__(
        self,
        source: CatalogSource,
        config: Optional[CatalogConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.source = source
        self.config = config or CatalogConfig()
        self.on_progress = on_progress or _noop_progress
        self.diagnostics = IngestionDiagnostics()
        self.lineage = LineageIndex()

    def _progress(self, percent: float, message: str) -> None:
        LOGGER.info("%d%% - %s", round(percent), message)
        self.on_progress(percent, message)

    async def run(self) -> IngestionResult:
        self.diagnostics = IngestionDiagnostics()
        self.lineage = await self._fetch_lineage()
        self._progress(PROGRESS_LINEAGE, "Loaded generation data...")

        references = await self._fetch_references()
        records = await self._fetch_records(references)

        catalog = Catalog(records)
        LOGGER.info(
            "Catalog ready: %d records, %d dropped, %d generations missing",
            len(catalog),
            len(self.diagnostics.dropped_references),
            len(self.diagnostics.failed_generations),
        )
        return IngestionResult(catalog=catalog, lineage=self.lineage, diagnostics=self.diagnostics)

    # ---------- Lineage ----------
    async def _fetch_generation(self, generation: int) -> Dict[str, int]:
        try:
            keys = await self.source.fetch_generation(generation)
        except Exception as exc:
            LOGGER.warning("Failed to fetch generation %d: %s", generation, exc)
            self.diagnostics.failed_generations.append(generation)
            return {}
        return {key: generation for key in keys}

    async def _fetch_lineage(self) -> LineageIndex:
        generations = range(1, self.config.generation_count + 1)
        parts = await asyncio.gather(*(self._fetch_generation(g) for g in generations))
        self.diagnostics.failed_generations.sort()
        mapping: Dict[str, int] = {}
        for part in parts:
            mapping.update(part)
        return LineageIndex(mapping)

    # ---------- References ----------
    async def _fetch_references(self) -> List[EntityReference]:
        self._progress(PROGRESS_LIST_START, "Fetching Pokemon list...")
        try:
            references = await self.source.list_entity_references()
        except Exception as exc:
            LOGGER.error("Cannot fetch the Pokemon list: %s", exc)
            raise FatalIngestionError(f"cannot fetch the entity reference list: {exc}") from exc
        self._progress(PROGRESS_LIST_DONE, f"Found {len(references)} Pokemon...")

        in_range = [r for r in references if 1 <= r.id <= self.config.max_entity_id]
        self.diagnostics.skipped_out_of_range = len(references) - len(in_range)
        return in_range

    # ---------- Entities ----------
    async def _fetch_records(self, references: List[EntityReference]) -> List[EntityRecord]:
        total = len(references)
        batches = make_batches(references, self.config.batch_size)
        self.diagnostics.batches = len(batches)
        accumulated: List[EntityRecord] = []
        seen_ids = set()

        for i, batch in enumerate(batches):
            results = await asyncio.gather(*(self._resolve(ref) for ref in batch))
            for ref, record in zip(batch, results):
                if record is None:
                    self.diagnostics.dropped_references.append(ref.id)
                    continue
                if record.id in seen_ids:
                    LOGGER.warning("Duplicate entity #%d from %s, keeping the first one", record.id, ref.locator)
                    self.diagnostics.dropped_references.append(ref.id)
                    continue
                seen_ids.add(record.id)
                accumulated.append(record)

            start = i * self.config.batch_size + 1
            end = min((i + 1) * self.config.batch_size, total)
            percent = PROGRESS_LIST_DONE + ((i + 1) / len(batches)) * PROGRESS_BATCH_SPAN
            self._progress(percent, f"Loading Pokemon {start}-{end}...")

        self._progress(100.0, "Loading complete!")
        return accumulated

    async def _resolve(self, ref: EntityReference) -> Optional[EntityRecord]:
        try:
            detail = await self.source.fetch_detail(ref.locator)
            species = await self.source.fetch_species(detail.species_locator)
            depth = 1
            if species.predecessor_locator:
                predecessor = await self.source.fetch_species(species.predecessor_locator)
                # One hop only: anything older than the grandparent still counts as 3.
                depth = MAX_EVOLUTION_DEPTH if predecessor.predecessor_locator else 2

            return EntityRecord(
                id=detail.id,
                canonical_name=detail.canonical_name,
                localized_names=species.localized_names,
                image_ref=detail.sprite_locator or placeholder_sprite(),
                categories=detail.categories,
                generation=self.lineage.generation_of(detail.species_key),
                evolution_depth=depth,
                flags=species.flags(),
                color_tag=species.color_tag,
            )
        except Exception as exc:
            LOGGER.warning("Error fetching %s (#%d): %s", ref.name or ref.locator, ref.id, exc)
            return None


async def ingest(
    source: CatalogSource,
    config: Optional[CatalogConfig] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> IngestionResult:
    return await IngestionPipeline(source, config, on_progress).run()


def ingest_sync(
    source: CatalogSource,
    config: Optional[CatalogConfig] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> IngestionResult:
    return asyncio.run(ingest(source, config, on_progress))
