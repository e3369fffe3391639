import os
import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Set

from .. import config
from ..models import PhotoRecord, ScanEntry
from .matcher import SidecarIndex


def classify(path: Path) -> str:
    """Returns 'media', 'sidecar' or 'other'."""
    name = path.name.lower()
    if name.endswith(config.SIDECAR_EXT):
        return 'other' if name == config.ALBUM_METADATA_NAME else 'sidecar'
    if any(name.endswith(ext) for ext in config.MEDIA_EXTS):
        return 'media'
    return 'other'


def detect_album(root: Path, path: Path) -> str:
    """
    Album = first folder under root, skipping the 'Google Photos' wrapper.
    'Photos from YYYY' upload containers and files at the top level belong
    to no album.
    """
    parts = path.relative_to(root).parts
    if len(parts) < 2:
        return ""

    if parts[0] == config.TAKEOUT_WRAPPER_DIR:
        if len(parts) > 2 and not parts[1].startswith(config.UPLOAD_CONTAINER_PREFIX):
            return parts[1]
        return ""

    if parts[0].startswith(config.UPLOAD_CONTAINER_PREFIX):
        return ""
    return parts[0]


def parse_ext_filter(only_exts: str) -> Set[str]:
    exts = set()
    for part in (only_exts or "").split(","):
        ext = part.strip().lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = "." + ext
        exts.add(ext)
    return exts


def filter_entries_by_ext(entries: List[ScanEntry], only_exts: str) -> List[ScanEntry]:
    """Keeps entries whose extension is in the comma list; empty list keeps all."""
    allowed = parse_ext_filter(only_exts)
    if not allowed:
        return entries
    return [e for e in entries if e.media_path.suffix.lower() in allowed]


class TakeoutScanner:
    def scan(self, root: Path) -> List[ScanEntry]:
        """
        Walks root once, indexing sidecars and collecting media, then pairs
        every media file with its sidecar. Order follows the sorted walk.
        """
        index = SidecarIndex()
        media: List[ScanEntry] = []

        for path in self._iter_files(root):
            kind = classify(path)
            if kind == 'sidecar':
                index.add(path)
            elif kind == 'media':
                media.append(ScanEntry(media_path=path, album=detect_album(root, path)))
                logging.debug(f"Scanned: {path.relative_to(root)}")

        matched = 0
        for entry in media:
            entry.sidecar_path = index.resolve(entry.media_path)
            if entry.sidecar_path:
                matched += 1
            else:
                logging.debug(f"No sidecar for {entry.media_path}")

        logging.info(f"Scan complete. Media files found: {len(media)} ({matched} with sidecar)")
        return media

    def _iter_files(self, root: Path) -> Iterator[Path]:
        """Depth-first walker using os.scandir for speed."""
        stack = [root]
        while stack:
            current = stack.pop()

            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except (OSError, PermissionError):
                logging.warning(f"Permission denied: {current}")
                continue

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name.lower())

            dirs = []
            files = []
            for e in entries:
                if e.is_dir(follow_symlinks=False):
                    if e.name != config.STATE_DIR_NAME:
                        dirs.append(Path(e.path))
                elif e.is_file(follow_symlinks=False):
                    files.append(Path(e.path))

            # Push dirs to stack (reversed so we process A before Z)
            for d in reversed(dirs):
                stack.append(d)

            for f in files:
                yield f


def entries_to_records(entries: Iterable[ScanEntry]) -> List[PhotoRecord]:
    """One record per scanned file, without hashing (dates-only mode)."""
    records = []
    for e in entries:
        records.append(PhotoRecord(
            source_path=e.media_path,
            sidecar_path=e.sidecar_path,
            albums={e.album} if e.album else set(),
            duplicate_paths=[e.media_path],
        ))
    return records
