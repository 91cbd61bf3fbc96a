import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple


APP_NAME = "DexPicker"
APP_VERSION = "1.0.0"
LOGGER = logging.getLogger("dexpicker.config")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

DEFAULT_API_BASE = "https://pokeapi.co/api/v2"
DEFAULT_LOCALES: Tuple[str, ...] = ("en", "de", "es", "fr", "ja", "ko")


def configure_logging(level: int = logging.INFO) -> None:
    if logging.getLogger().handlers:
        return
    logging.basicConfig(level=level, format=LOG_FORMAT)


# =========================
# Paths
# =========================
@dataclass(frozen=True)
class AppPaths:
    user_base: Path
    user_config_dir: Path
    config_path: Path


def get_user_base_dir() -> Path:
    override = os.environ.get("DEXPICKER_HOME")
    if override:
        return Path(override)
    base = os.environ.get("LOCALAPPDATA") or os.environ.get("APPDATA")
    if base:
        return Path(base) / APP_NAME
    return Path.home() / "AppData" / "Local" / APP_NAME


def build_app_paths() -> AppPaths:
    user_base = get_user_base_dir()
    user_config_dir = user_base / "config"
    return AppPaths(
        user_base=user_base,
        user_config_dir=user_config_dir,
        config_path=user_config_dir / "catalog.json",
    )


# =========================
# Catalog config
# =========================
@dataclass
class CatalogConfig:
    api_base: str = DEFAULT_API_BASE
    batch_size: int = 30
    max_entity_id: int = 1025  # Pecharunt; higher ids are alternate forms
    generation_count: int = 9
    request_timeout_sec: int = 20
    supported_locales: Tuple[str, ...] = DEFAULT_LOCALES
    default_locale: str = "en"
    user_agent: str = f"{APP_NAME}/{APP_VERSION}"

    def to_dict(self) -> dict:
        return {
            "api_base": self.api_base,
            "batch_size": self.batch_size,
            "max_entity_id": self.max_entity_id,
            "generation_count": self.generation_count,
            "request_timeout_sec": self.request_timeout_sec,
            "supported_locales": list(self.supported_locales),
            "default_locale": self.default_locale,
            "user_agent": self.user_agent,
        }


def _clamp_int(raw, default: int, lo: int, hi: int) -> int:
    try:
        v = int(raw)
    except (TypeError, ValueError):
        return default
    return max(lo, min(hi, v))


def _clean_str(raw, default: str) -> str:
    # null, numbers and other non-strings count as missing
    if not isinstance(raw, str):
        return default
    return raw.strip() or default


def load_catalog_config(path: str) -> CatalogConfig:
    defaults = CatalogConfig()
    try:
        with open(path, "r", encoding="utf-8-sig") as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise ValueError("top-level JSON value must be an object")

        api_base = _clean_str(raw.get("api_base"), defaults.api_base).rstrip("/") or defaults.api_base
        raw_locales = raw.get("supported_locales")
        if not isinstance(raw_locales, list):
            raw_locales = []
        locales = tuple(
            x.strip().lower() for x in raw_locales if isinstance(x, str) and x.strip()
        ) or defaults.supported_locales
        default_locale = _clean_str(raw.get("default_locale"), defaults.default_locale).lower()
        if default_locale not in locales:
            default_locale = locales[0]

        return CatalogConfig(
            api_base=api_base,
            batch_size=_clamp_int(raw.get("batch_size"), defaults.batch_size, 1, 200),
            max_entity_id=_clamp_int(raw.get("max_entity_id"), defaults.max_entity_id, 1, 100_000),
            generation_count=_clamp_int(raw.get("generation_count"), defaults.generation_count, 1, 9),
            request_timeout_sec=_clamp_int(raw.get("request_timeout_sec"), defaults.request_timeout_sec, 3, 300),
            supported_locales=locales,
            default_locale=default_locale,
            user_agent=_clean_str(raw.get("user_agent"), defaults.user_agent),
        )
    except Exception as exc:
        LOGGER.warning("Invalid catalog config at %s, using defaults: %s", path, exc)
        return CatalogConfig()


def save_catalog_config(path: str, cfg: CatalogConfig) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(cfg.to_dict(), f, ensure_ascii=False, indent=2)


def ensure_catalog_config(path: Optional[str] = None) -> CatalogConfig:
    path = path or str(build_app_paths().config_path)
    if not os.path.exists(path):
        cfg = CatalogConfig()
        try:
            save_catalog_config(path, cfg)
        except OSError as exc:
            LOGGER.warning("Cannot create catalog config at %s: %s", path, exc)
        return cfg

    cfg = load_catalog_config(path)
    # Rewrite so clamped / defaulted values are visible in the file.
    try:
        save_catalog_config(path, cfg)
    except OSError as exc:
        LOGGER.warning("Cannot normalize catalog config at %s: %s", path, exc)
    return cfg


# =========================
# Preferences (opaque pass-through)
# =========================
@dataclass
class Preferences:
    locale: str = "en"
    theme: str = "light"
