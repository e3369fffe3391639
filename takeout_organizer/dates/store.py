"""
Persistence of operator decisions made during date review.

  date_patterns.json   -> [{"regex": "...", "layout": "..."}, ...]
  date_exclusions.json -> ["IMG_0001.jpg", ...]
"""
import json
import logging
from pathlib import Path
from typing import List, Optional, Set

from ..models import CustomDatePattern


def _read_json(path: Optional[Path]):
    if path is None or not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logging.warning(f"Ignoring unreadable file {path}: {e}")
        return None


def _write_json(path: Optional[Path], payload):
    if path is None:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    tmp.replace(path)


def load_custom_patterns(path: Optional[Path]) -> List[CustomDatePattern]:
    raw = _read_json(path)
    if not isinstance(raw, list):
        return []
    patterns = []
    for item in raw:
        if isinstance(item, dict) and item.get("regex") and item.get("layout"):
            patterns.append(CustomDatePattern(regex=str(item["regex"]), layout=str(item["layout"])))
    return patterns


def save_custom_patterns(path: Optional[Path], patterns: List[CustomDatePattern]):
    _write_json(path, [{"regex": p.regex, "layout": p.layout} for p in patterns])


def load_exclusions(path: Optional[Path]) -> Set[str]:
    raw = _read_json(path)
    if not isinstance(raw, list):
        return set()
    return {item for item in raw if isinstance(item, str) and item}


def save_exclusions(path: Optional[Path], exclusions: Set[str]):
    _write_json(path, sorted(exclusions))
