"""YAML-based extraction profiles.

A profile file holds a ``default`` section and optional per-domain sections;
the most specific domain matching the page host is merged over the default::

    default:
      max_free_records: 3
      store_timeout: 5
    domains:
      example.edu:
        selectors:
          tuition: [".fees-table td.total"]
          institution: ["#masthead .brand"]

Recognised keys: ``selectors`` (field -> CSS selectors tried before the
built-in selector rules), ``store_dir``, ``store_timeout``,
``max_free_records``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml


def _merge_selectors(base: Any, override: Any) -> dict[str, list[str]]:
    merged: dict[str, list[str]] = {}
    for source in (base, override):
        if not isinstance(source, dict):
            continue
        for field, selectors in source.items():
            if isinstance(selectors, str):
                selectors = [selectors]
            if not isinstance(field, str) or not isinstance(selectors, list):
                continue
            # Domain selectors go first
            merged[field] = [str(s) for s in selectors] + [
                s for s in merged.get(field, []) if s not in selectors
            ]
    return merged


def parse_profile(data: Any, url: str = "") -> dict[str, Any]:
    """Merge the ``default`` section with the best-matching domain section for *url*."""
    default = data.get("default", {}) if isinstance(data, dict) else {}
    domains = data.get("domains", {}) if isinstance(data, dict) else {}

    netloc = (urlparse(url).hostname or "").lower() if url else ""
    best_key = ""
    best_cfg: dict[str, Any] = {}
    if netloc and isinstance(domains, dict):
        for key, cfg in domains.items():
            if not isinstance(key, str) or not isinstance(cfg, dict):
                continue
            key_lower = key.lower()
            if (netloc == key_lower or netloc.endswith("." + key_lower)) and (
                len(key_lower) > len(best_key)
            ):
                best_key = key_lower
                best_cfg = cfg

    merged: dict[str, Any] = {}
    if isinstance(default, dict):
        merged.update(default)
    merged.update(best_cfg)
    selectors = _merge_selectors(
        default.get("selectors") if isinstance(default, dict) else None,
        best_cfg.get("selectors"),
    )
    if selectors:
        merged["selectors"] = selectors
    return merged


def load_profile(path: str | Path, url: str = "") -> dict[str, Any]:
    """Load the YAML profile at *path* and return merged settings for *url*."""
    data = yaml.safe_load(Path(path).expanduser().read_text(encoding="utf-8")) or {}
    return parse_profile(data, url)
