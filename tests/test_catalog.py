from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
import requests

from catalog import (
    Catalog,
    EntityRecord,
    LineageIndex,
    PokeApiSource,
    TolerableFetchFailure,
    extract_id_from_url,
    parse_detail,
    parse_species,
    placeholder_sprite,
)
from config import CatalogConfig
from conftest import make_record


API = "https://pokeapi.co/api/v2"


def detail_payload(**overrides):
    data = {
        "id": 6,
        "name": "charizard",
        "species": {"name": "charizard", "url": f"{API}/pokemon-species/6/"},
        "types": [
            {"slot": 2, "type": {"name": "flying"}},
            {"slot": 1, "type": {"name": "fire"}},
        ],
        "sprites": {
            "front_default": "https://img.example/6.png",
            "other": {"showdown": {"front_default": "https://img.example/showdown/6.gif"}},
        },
    }
    data.update(overrides)
    return data


def mock_response(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


def test_parse_detail_orders_types_by_slot_and_prefers_animated_sprite():
    rec = parse_detail(detail_payload())
    assert rec.id == 6
    assert rec.categories == ("fire", "flying")
    assert rec.sprite_locator == "https://img.example/showdown/6.gif"
    assert rec.species_key == "charizard"
    assert rec.species_locator.endswith("/pokemon-species/6/")


def test_parse_detail_falls_back_to_static_then_none():
    static = parse_detail(detail_payload(sprites={"front_default": "https://img.example/6.png", "other": {}}))
    assert static.sprite_locator == "https://img.example/6.png"

    missing = parse_detail(detail_payload(sprites={"front_default": None}))
    assert missing.sprite_locator is None


@pytest.mark.parametrize(
    "payload",
    [
        {"name": "no-id"},
        detail_payload(species=None),
        detail_payload(types=[]),
        detail_payload(types=[{"slot": i, "type": {"name": n}} for i, n in enumerate(("fire", "water", "grass"), 1)]),
    ],
)
def test_parse_detail_rejects_malformed_payloads(payload):
    with pytest.raises(TolerableFetchFailure):
        parse_detail(payload)


def test_parse_species_keeps_supported_locales_only():
    data = {
        "names": [
            {"language": {"name": "de"}, "name": "Glurak"},
            {"language": {"name": "ja"}, "name": "リザードン"},
            {"language": {"name": "it"}, "name": "Charizard"},
            {"language": {"name": "fr"}, "name": "  "},
        ],
        "is_legendary": False,
        "is_baby": False,
        "is_mythical": False,
        "color": {"name": "red"},
        "evolves_from_species": {"name": "charmeleon", "url": f"{API}/pokemon-species/5/"},
    }
    rec = parse_species(data, ("en", "de", "fr", "ja"))
    assert dict(rec.localized_names) == {"de": "Glurak", "ja": "リザードン"}
    assert rec.color_tag == "red"
    assert rec.predecessor_locator == f"{API}/pokemon-species/5/"
    assert rec.flags() == frozenset()


def test_parse_species_flags_and_missing_fields():
    rec = parse_species({"is_baby": True, "is_mythical": True, "evolves_from_species": None}, ("en",))
    assert rec.flags() == {"baby", "mythical"}
    assert rec.color_tag is None
    assert rec.predecessor_locator is None
    assert dict(rec.localized_names) == {}


@pytest.mark.parametrize(
    "url,expected",
    [
        (f"{API}/pokemon/25/", 25),
        (f"{API}/pokemon/10001", 10001),
        (f"{API}/pokemon/pikachu/", None),
        ("", None),
    ],
)
def test_extract_id_from_url(url, expected):
    assert extract_id_from_url(url) == expected


def test_entity_record_validation():
    with pytest.raises(ValueError):
        make_record(0)
    with pytest.raises(ValueError):
        make_record(1, categories=())
    with pytest.raises(ValueError):
        make_record(1, categories=("fire", "water", "grass"))
    with pytest.raises(ValueError):
        make_record(1, evolution_depth=4)
    with pytest.raises(ValueError):
        make_record(1, generation=10)


def test_entity_record_names_are_read_only_and_fall_back():
    names = {"de": "Bisasam"}
    rec = make_record(1, "bulbasaur", names=names)
    names["de"] = "changed"
    assert rec.display_name("de") == "Bisasam"
    assert rec.display_name("ko") == "bulbasaur"
    assert rec.category_count == 1
    with pytest.raises(TypeError):
        rec.localized_names["en"] = "x"


def test_catalog_sorts_by_id_and_rejects_duplicates():
    catalog = Catalog([make_record(25), make_record(1), make_record(4)])
    assert catalog.ids() == [1, 4, 25]
    assert catalog[0].id == 1
    assert catalog.get(4).id == 4
    assert catalog.get(99) is None
    assert isinstance(catalog[0], EntityRecord)

    with pytest.raises(ValueError):
        Catalog([make_record(1), make_record(1)])


def test_lineage_index_defaults_to_generation_one():
    lineage = LineageIndex({"chikorita": 2})
    assert lineage.generation_of("chikorita") == 2
    assert lineage.generation_of("unknown") == 1
    assert "chikorita" in lineage
    assert len(lineage) == 1


def test_placeholder_sprite_is_png_data_uri():
    uri = placeholder_sprite()
    assert uri.startswith("data:image/png;base64,")
    assert placeholder_sprite() is uri


def test_pokeapi_source_lists_numeric_references_only():
    session = MagicMock()
    session.get.return_value = mock_response(
        {
            "results": [
                {"name": "bulbasaur", "url": f"{API}/pokemon/1/"},
                {"name": "weird", "url": f"{API}/pokemon/weird/"},
                {"name": "deoxys-attack", "url": f"{API}/pokemon/10001/"},
            ]
        }
    )
    with PokeApiSource(CatalogConfig(api_base=API), session=session) as source:
        refs = asyncio.run(source.list_entity_references())

    assert [(r.id, r.name) for r in refs] == [(1, "bulbasaur"), (10001, "deoxys-attack")]
    assert refs[0].locator == f"{API}/pokemon/1/"
    session.get.assert_called_once_with(f"{API}/pokemon?limit=10000", timeout=20)
    session.close.assert_called_once()


def test_pokeapi_source_caches_payloads_per_url():
    session = MagicMock()
    session.get.return_value = mock_response({"pokemon_species": [{"name": "chikorita"}, {"name": "cyndaquil"}]})
    source = PokeApiSource(CatalogConfig(api_base=API), session=session)
    try:
        first = asyncio.run(source.fetch_generation(2))
        second = asyncio.run(source.fetch_generation(2))
    finally:
        source.close()

    assert first == second == ["chikorita", "cyndaquil"]
    assert session.get.call_count == 1


def test_pokeapi_source_propagates_http_errors():
    session = MagicMock()
    resp = mock_response({})
    resp.raise_for_status.side_effect = requests.HTTPError("503 Server Error")
    session.get.return_value = resp
    with PokeApiSource(CatalogConfig(api_base=API), session=session) as source:
        with pytest.raises(requests.HTTPError):
            asyncio.run(source.fetch_detail(f"{API}/pokemon/1/"))


def test_pokeapi_source_parses_detail_and_species():
    payloads = {
        f"{API}/pokemon/6/": detail_payload(),
        f"{API}/pokemon-species/6/": {"names": [{"language": {"name": "fr"}, "name": "Dracaufeu"}]},
    }
    session = MagicMock()
    session.get.side_effect = lambda url, timeout: mock_response(payloads[url])
    with PokeApiSource(CatalogConfig(api_base=API, supported_locales=("en", "fr")), session=session) as source:
        detail = asyncio.run(source.fetch_detail(f"{API}/pokemon/6/"))
        species = asyncio.run(source.fetch_species(detail.species_locator))

    assert detail.categories == ("fire", "flying")
    assert dict(species.localized_names) == {"fr": "Dracaufeu"}


def test_pokeapi_source_sets_user_agent_on_its_own_session():
    source = PokeApiSource(CatalogConfig(user_agent="DexPicker/test"))
    try:
        assert source._session.headers["User-Agent"] == "DexPicker/test"
    finally:
        source.close()
