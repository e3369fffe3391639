import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from tqdm import tqdm

from ..exceptions import FileHashError
from ..models import PhotoRecord, ScanEntry
from ..scanning.hasher import FileHasher, HashCache

NOHASH_PREFIX = "nohash:"


def _fold_rank(source_path: Path, sidecar_path: Optional[Path]):
    # Sidecar-bearing copies carry the record; shorter paths break ties
    return (sidecar_path is None, len(str(source_path)))


class RecordRegistry:
    """
    Arena of PhotoRecords plus an identity -> index map.

    Identity is the content hash, or 'nohash:<path>' when hashing failed so
    that unreadable files are kept apart instead of being dropped.
    """

    def __init__(self):
        self.records: List[PhotoRecord] = []
        self._index: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[PhotoRecord]:
        return iter(self.records)

    def get(self, key: str) -> Optional[PhotoRecord]:
        idx = self._index.get(key)
        return self.records[idx] if idx is not None else None

    def add(self, key: str, entry: ScanEntry, size: int, content_hash: Optional[str]) -> PhotoRecord:
        """Creates a record for a new identity or folds entry into the existing one."""
        record = self.get(key)
        if record is None:
            record = PhotoRecord(
                source_path=entry.media_path,
                size_bytes=size,
                content_hash=content_hash,
                hash_failed=content_hash is None,
                sidecar_path=entry.sidecar_path,
                duplicate_paths=[entry.media_path],
            )
            self._index[key] = len(self.records)
            self.records.append(record)
        else:
            record.duplicate_paths.append(entry.media_path)
            if _fold_rank(entry.media_path, entry.sidecar_path) < _fold_rank(record.source_path, record.sidecar_path):
                record.source_path = entry.media_path
                record.sidecar_path = entry.sidecar_path

        if entry.album:
            record.albums.add(entry.album)
        return record


def build_registry(entries: List[ScanEntry],
                   cache: HashCache,
                   hasher: Optional[FileHasher] = None,
                   show_progress: bool = False) -> RecordRegistry:
    """
    Phase 1 of deduplication: hash every file (through the cache) and fold
    files with identical content into one record.
    """
    hasher = hasher or FileHasher()
    registry = RecordRegistry()
    cache_hits = 0
    failures = 0

    for entry in tqdm(entries, desc="Hashing", disable=not show_progress):
        path = entry.media_path
        try:
            st = path.stat()
        except OSError as e:
            logging.warning(f"Skipping vanished file {path}: {e}")
            continue

        abs_path = path.absolute()
        content_hash = cache.lookup(abs_path, st.st_size, st.st_mtime_ns)
        if content_hash:
            cache_hits += 1
        else:
            try:
                content_hash = hasher.full_hash(path)
                cache.store(abs_path, st.st_size, st.st_mtime_ns, content_hash)
            except FileHashError as e:
                logging.warning(f"Hash failed, keeping file: {e}")
                content_hash = None
                failures += 1

        key = content_hash if content_hash else f"{NOHASH_PREFIX}{path}"
        record = registry.add(key, entry, st.st_size, content_hash)
        logging.debug(f"Hashed: {record.source_path}")

    try:
        cache.save()
    except OSError as e:
        logging.warning(f"Could not save hash cache {cache.path}: {e}")

    logging.info(
        f"Unique files (by hash): {len(registry)} "
        f"from {len(entries)} files ({cache_hits} cached, {failures} hash failures)"
    )
    return registry
