import json
import logging
import re
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .. import config

_TRAILING_INDEX = re.compile(r'\(\d+\)$')


def strip_ext(name: str) -> str:
    """'IMG_1.jpg' -> 'IMG_1'. Names without a suffix are returned as-is."""
    suffix = Path(name).suffix
    return name[:-len(suffix)] if suffix else name


def strip_trailing_index(name: str) -> str:
    """Removes a duplicate index such as '(1)' from the end of a name."""
    return _TRAILING_INDEX.sub('', name)


def normalize_sidecar_key(filename: str) -> str:
    """
    Reduces a sidecar filename to the media name it describes.

    'IMG_1.jpg.supplemental-metadata(1).json' -> 'IMG_1.jpg'
    """
    if not filename.endswith(config.SIDECAR_EXT):
        return ""
    name = filename[:-len(config.SIDECAR_EXT)].rstrip('.')
    name = strip_trailing_index(name)

    lower = name.lower()
    # Takeout truncates long names, so '.supplemental-metadata' may appear as '.supp'
    for marker in ('.supp', '.meta'):
        idx = lower.find(marker)
        if idx >= 0:
            return name[:idx]
    return name


def normalize_edited_base(base: str) -> str:
    """Strips a duplicate index and one photo-editing suffix."""
    if not base:
        return ""
    b = strip_trailing_index(base.strip().lower())
    for suffix in config.EDIT_SUFFIXES:
        if b.endswith(suffix):
            b = b[:-len(suffix)]
            break
    return b.strip()


def media_keys(base: str) -> List[str]:
    """Candidate sidecar keys for a media filename, most specific first."""
    base = base.rstrip('.')
    if not base:
        return []
    no_ext = strip_ext(base)
    keys = []
    for k in (base, no_ext, strip_trailing_index(base), strip_trailing_index(no_ext)):
        k = k.strip()
        if k and k not in keys:
            keys.append(k)
    return keys


def matches_sidecar_name(filename: str, base: str) -> bool:
    """
    True when filename follows the Takeout sidecar naming for base:
        IMG_123.jpg.json
        IMG_123.jpg.supplemental-metadata.json
        IMG_123(1).json
        IMG_123(1).metadata.json
    """
    if not base:
        return False
    pattern = '^' + re.escape(base) + r'(\(\d+\))?(\.supplemental-metadata|\.metadata)?\.json$'
    return re.match(pattern, filename) is not None


def read_sidecar_title(path: Path) -> Optional[str]:
    try:
        with path.open('r', encoding='utf-8') as f:
            payload = json.load(f)
    except (OSError, ValueError) as e:
        logging.debug(f"Unreadable sidecar {path}: {e}")
        return None
    if not isinstance(payload, dict):
        return None
    title = payload.get('title')
    if not isinstance(title, str) or not title:
        return None
    return title


class SidecarIndex:
    """
    Lookup tables over every sidecar in the tree, used to pair media files
    with their metadata when the exported names have drifted apart.
    """

    def __init__(self):
        self.by_title: Dict[str, List[Path]] = defaultdict(list)
        self.by_key: Dict[str, List[Path]] = defaultdict(list)
        self.by_dir: Dict[Path, List[Tuple[str, Path]]] = defaultdict(list)
        self.by_norm: Dict[str, List[Path]] = defaultdict(list)

    def add(self, path: Path):
        title = read_sidecar_title(path)
        if title:
            self.by_title[title.lower()].append(path)
            self.by_dir[path.parent].append((title, path))
            norm = normalize_edited_base(strip_ext(title))
            if norm:
                self.by_norm[norm].append(path)

        key = normalize_sidecar_key(path.name)
        if key:
            self.by_key[key].append(path)

    def resolve(self, media_path: Path) -> Optional[Path]:
        """
        Runs the match chain for one media file. First hit wins.
        """
        base = media_path.name
        no_ext = strip_ext(base)
        ext = media_path.suffix.lower()

        # 1. Declared title equals the full name or the stem
        for title in (base.lower(), no_ext.lower()):
            found = self._pick(self.by_title.get(title), base)
            if found:
                return found

        # Motion photos: 'PXL_1.MP' described by 'PXL_1.MP.jpg'
        if ext == '.mp':
            for still_ext in config.MOTION_PHOTO_STILL_EXTS:
                found = self._pick(self.by_title.get((base + still_ext).lower()), base)
                if found:
                    return found

        # 2. Live photo video next to its still
        found = self._live_photo_sibling(media_path)
        if found:
            return found

        # 3. Normalized filename keys
        for key in media_keys(base):
            found = self._pick(self.by_key.get(key), base)
            if found:
                return found

        # 4. Truncated titles in the same directory
        found = self._prefix_candidate(media_path)
        if found:
            return found

        # 5. Edited copies share the original's sidecar
        norm = normalize_edited_base(no_ext)
        if norm:
            found = self._pick(self.by_norm.get(norm), base)
            if found:
                return found

        return None

    def _live_photo_sibling(self, media_path: Path) -> Optional[Path]:
        if media_path.suffix.lower() not in config.LIVE_PHOTO_VIDEO_EXTS:
            return None
        stem = strip_ext(media_path.name).lower()
        for still_ext in config.LIVE_PHOTO_STILL_EXTS:
            title = stem + still_ext
            found = self._pick(self.by_title.get(title), title)
            if found:
                return found
        return None

    def _prefix_candidate(self, media_path: Path) -> Optional[Path]:
        entries = self.by_dir.get(media_path.parent)
        ext = media_path.suffix.lower()
        if not entries or not ext:
            return None

        stem = strip_ext(media_path.name).lower()
        best = None
        best_len = 0
        for title, path in entries:
            title = title.lower()
            if not title.endswith(ext):
                continue
            title_base = title[:-len(ext)]
            if not title_base.startswith(stem):
                continue
            if best is None or len(title_base) < best_len:
                best = path
                best_len = len(title_base)
        return best

    def _pick(self, candidates: Optional[List[Path]], base: str) -> Optional[Path]:
        if not candidates:
            return None
        if len(candidates) == 1:
            return candidates[0]
        for c in candidates:
            if matches_sidecar_name(c.name, base):
                return c
        return candidates[0]
