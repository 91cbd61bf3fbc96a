import argparse
import logging
import sys
from typing import List, Optional, Sequence, Tuple

from catalog import PokeApiSource
from config import APP_NAME, Preferences, configure_logging, ensure_catalog_config
from filters import (
    FACET_CATEGORY_COUNT,
    FACET_DOMAINS,
    FACET_EVOLUTION_DEPTH,
    FACET_GENERATION,
    FACETS,
    FilterState,
    TriState,
)
from ingest import FatalIngestionError, ingest_sync
from session import Session


LOGGER = logging.getLogger("dexpicker")

ROMAN_NUMERALS = {1: "I", 2: "II", 3: "III", 4: "IV", 5: "V", 6: "VI", 7: "VII", 8: "VIII", 9: "IX"}

CATEGORY_COUNT_ALIASES = {"single": 1, "dual": 2}
INT_FACETS = (FACET_GENERATION, FACET_CATEGORY_COUNT, FACET_EVOLUTION_DEPTH)


def generation_label(generation: int) -> str:
    return ROMAN_NUMERALS.get(generation, "I")


def format_record(p, locale: str, chosen: bool = False, disabled: bool = False) -> str:
    star = "*" if chosen else " "
    name = p.display_name(locale)
    if disabled:
        name = f"({name})"
    return f"{star} #{p.id:03d} {generation_label(p.generation):>4} {name} [{'/'.join(p.categories)}]"


def parse_facet_value(spec: str) -> Tuple[str, object]:
    """``"generation=3"`` -> ("generation", 3); raises ValueError on unknown facets or values."""
    if "=" not in spec:
        raise ValueError(f"expected FACET=VALUE, got {spec!r}")
    facet, raw = (x.strip().lower() for x in spec.split("=", 1))
    if facet not in FACET_DOMAINS:
        raise ValueError(f"unknown facet {facet!r} (expected one of {', '.join(FACETS)})")
    value: object = raw
    if facet == FACET_CATEGORY_COUNT and raw in CATEGORY_COUNT_ALIASES:
        value = CATEGORY_COUNT_ALIASES[raw]
    elif facet in INT_FACETS:
        value = int(raw)
    if value not in FACET_DOMAINS[facet]:
        raise ValueError(f"{raw!r} is not a valid {facet}")
    return facet, value


def build_filter_state(args: argparse.Namespace) -> FilterState:
    state = FilterState()
    state.name_query = args.name or ""
    state.set_category_mode(args.category_mode)
    for spec in args.include or []:
        state.set_state(*parse_facet_value(spec), TriState.INCLUDED)
    for spec in args.exclude or []:
        state.set_state(*parse_facet_value(spec), TriState.EXCLUDED)
    return state


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=APP_NAME.lower(), description="Load the Pokedex and filter it.")
    parser.add_argument("--config", default=None, help="path to catalog.json (default: per-user config dir)")
    parser.add_argument("--locale", default=None, help="display locale for names (en, de, es, fr, ja, ko)")
    parser.add_argument("--theme", default="light", help="passed through untouched")
    parser.add_argument("--name", default="", help="case-insensitive name substring")
    parser.add_argument("--include", action="append", metavar="FACET=VALUE", help="repeatable")
    parser.add_argument("--exclude", action="append", metavar="FACET=VALUE", help="repeatable")
    parser.add_argument("--category-mode", choices=("or", "and"), default="or")
    parser.add_argument("--disable", action="append", type=int, default=[], metavar="ID")
    parser.add_argument("--random", action="store_true", help="pick a random displayed, enabled Pokemon")
    parser.add_argument("--limit", type=int, default=0, help="print at most N rows (0 = all)")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def _print_progress(percent: float, message: str) -> None:
    print(f"\r{round(percent):3d}% - {message}", end="", file=sys.stderr, flush=True)


def run(args: argparse.Namespace) -> int:
    cfg = ensure_catalog_config(args.config)
    try:
        filter_state = build_filter_state(args)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    with PokeApiSource(cfg) as source:
        try:
            result = ingest_sync(source, cfg, on_progress=_print_progress)
        except FatalIngestionError as exc:
            print("", file=sys.stderr)
            LOGGER.error("Ingestion failed: %s", exc)
            print("Error loading Pokemon. Please retry.", file=sys.stderr)
            return 1
    print("", file=sys.stderr)

    session = Session(result.catalog, Preferences(locale=args.locale or cfg.default_locale, theme=args.theme))
    session.filters = filter_state
    for entity_id in args.disable:
        session.toggle_disabled(entity_id)
    displayed = session.refresh()

    if args.random and session.choose_random() is None:
        print("No Pokemon available for a random pick.", file=sys.stderr)

    locale = session.preferences.locale
    chosen_id = session.selection.chosen_id
    rows: Sequence = displayed[: args.limit] if args.limit > 0 else displayed
    for p in rows:
        print(format_record(p, locale, chosen=p.id == chosen_id, disabled=p.id in session.selection.disabled_ids))

    print(f"{len(displayed)} shown, {session.remaining_count()} remaining of {len(result.catalog)}")
    chosen = session.chosen_record()
    if chosen is not None:
        print(f"Chosen: #{chosen.id:03d} {chosen.display_name(locale)}")
    if result.diagnostics.is_partial:
        LOGGER.warning(
            "Partial catalog: %d Pokemon dropped, generations missing: %s",
            len(result.diagnostics.dropped_references),
            result.diagnostics.failed_generations or "none",
        )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
