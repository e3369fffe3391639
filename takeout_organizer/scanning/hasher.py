import hashlib
import json
import logging
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Optional

from .. import config
from ..exceptions import FileHashError
from ..models import HashCacheEntry


class FileHasher:
    def full_hash(self, path: Path) -> str:
        """
        Reads the entire file and returns its SHA-256 hex digest.

        Raises FileHashError on any I/O failure so callers can keep the
        file under a fallback identity instead of dropping it.
        """
        h = hashlib.sha256()
        try:
            with open(path, 'rb') as f:
                while chunk := f.read(config.HASH_CHUNK_SIZE):
                    h.update(chunk)
        except OSError as e:
            raise FileHashError(f"Cannot hash {path}: {e}") from e
        return h.hexdigest()


class HashCache:
    """
    Persistent map of absolute source path -> (size, mtime_ns, hash).

    An entry is only trusted while both size and mtime_ns match the file
    on disk. The whole file is rewritten on save.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self.entries: Dict[str, HashCacheEntry] = {}
        self._lock = threading.Lock()

    @classmethod
    def load(cls, path: Optional[Path]) -> "HashCache":
        cache = cls(path)
        if path is None or not path.exists():
            return cache

        try:
            with path.open("r", encoding="utf-8") as f:
                payload = json.load(f)
            files = payload.get("files") or {}
            for src, raw in files.items():
                cache.entries[src] = HashCacheEntry(
                    size=int(raw["size"]),
                    mtime_ns=int(raw["mtime_ns"]),
                    hash=str(raw["hash"]),
                )
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            # A broken cache only costs a rehash
            logging.warning(f"Ignoring unreadable hash cache {path}: {e}")
            cache.entries = {}

        logging.debug(f"Loaded {len(cache.entries)} hash cache entries from {path}")
        return cache

    def lookup(self, path: Path, size: int, mtime_ns: int) -> Optional[str]:
        with self._lock:
            entry = self.entries.get(str(path))
        if entry and entry.size == size and entry.mtime_ns == mtime_ns and entry.hash:
            return entry.hash
        return None

    def store(self, path: Path, size: int, mtime_ns: int, value: str):
        with self._lock:
            self.entries[str(path)] = HashCacheEntry(size=size, mtime_ns=mtime_ns, hash=value)

    def save(self):
        if self.path is None:
            return
        with self._lock:
            payload = {"files": {src: asdict(e) for src, e in self.entries.items()}}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Readers never see a half-written cache
        tmp = self.path.with_name(self.path.name + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        tmp.replace(self.path)
