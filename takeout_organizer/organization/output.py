import logging
import os
import queue
import shutil
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Set

from tqdm import tqdm

from .. import config
from ..exceptions import CollisionError, FileOperationError
from ..metadata.filetype import normalized_name
from ..metadata.writer import ExifToolWriter, WriteItem, has_writable_metadata
from ..models import DateConfidence, PhotoRecord

# Queue sentinel
_STOP = object()
_POLL_SECONDS = 0.1


@dataclass
class Placement:
    source: Path
    destination: Path
    album: str
    captured_at: Optional[datetime]
    confidence: DateConfidence
    content_hash: Optional[str]
    copied: bool = False


@dataclass
class OutputSummary:
    dry_run: bool
    placements: List[Placement] = field(default_factory=list)
    copied: int = 0
    metadata_failures: int = 0


def sanitize_folder(name: str) -> str:
    name = name.strip().replace("/", "_").replace(os.sep, "_")
    return name or config.UNTITLED_ALBUM


def copy_file(src: Path, dst: Path):
    """Byte-for-byte copy, flushed to disk. Never overwrites an existing file."""
    with open(src, "rb") as fin, open(dst, "xb") as fout:
        shutil.copyfileobj(fin, fout, config.HASH_CHUNK_SIZE)
        fout.flush()
        os.fsync(fout.fileno())


class PathReserver:
    """
    Hands out collision-free destination paths. A path is taken if it exists
    on disk or was already handed out in this run (dry runs create nothing,
    so the in-memory set is what keeps their decisions identical).
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._reserved: Set[Path] = set()

    def _taken(self, path: Path) -> bool:
        return path in self._reserved or path.exists()

    def reserve(self, folder: Path, filename: str, content_hash: Optional[str]) -> Path:
        """
        1. the name itself, 2. name-<first 8 hash chars>, 3. name-<n>.

        Raises:
            CollisionError: all numeric suffixes up to the limit are taken.
        """
        with self._lock:
            candidate = folder / filename
            if not self._taken(candidate):
                self._reserved.add(candidate)
                return candidate
            logging.debug(f"Name collision detected: {candidate}")

            stem, ext = os.path.splitext(filename)
            if content_hash:
                candidate = folder / f"{stem}-{content_hash[:config.HASH_SUFFIX_LEN]}{ext}"
                if not self._taken(candidate):
                    self._reserved.add(candidate)
                    logging.debug(f"Resolved collision with hash: {candidate}")
                    return candidate

            for i in range(1, config.MAX_NUMERIC_SUFFIX + 1):
                candidate = folder / f"{stem}-{i}{ext}"
                if not self._taken(candidate):
                    self._reserved.add(candidate)
                    logging.debug(f"Resolved collision with suffix: {candidate}")
                    return candidate

        raise CollisionError(f"Too many name collisions for {folder / filename}")


class OutputPipeline:
    """
    Copies records into <out>/Library and <out>/Albums/<album>.

    A pool of copy workers drains a bounded job queue; successful copies are
    handed to a single metadata thread that batches exiftool writes. The
    first fatal error cancels the remaining work and is raised once all
    threads have stopped.
    """

    def __init__(self,
                 out_root: Path,
                 dry_run: bool = False,
                 workers: int = config.DEFAULT_WORKERS,
                 exif_batch: int = config.DEFAULT_EXIF_BATCH,
                 exiftool_available: bool = False,
                 writer=None,
                 show_progress: bool = False):
        self.out_root = out_root
        self.dry_run = dry_run
        self.workers = max(1, workers)
        self.exif_batch = max(1, exif_batch)
        self.write_metadata = not dry_run and exiftool_available
        self.writer = writer
        self.show_progress = show_progress

        self.reserver = PathReserver()
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._first_error: Optional[Exception] = None
        self._summary = OutputSummary(dry_run=dry_run)

    @property
    def library_dir(self) -> Path:
        return self.out_root / config.LIBRARY_FOLDER

    @property
    def albums_dir(self) -> Path:
        return self.out_root / config.ALBUMS_FOLDER

    def run(self, records: List[PhotoRecord]) -> OutputSummary:
        if not self.dry_run:
            try:
                self.library_dir.mkdir(parents=True, exist_ok=True)
                self.albums_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise FileOperationError(f"Cannot create output folders in {self.out_root}: {e}") from e

        logging.info(f"Organizing {len(records)} files into {self.out_root} "
                     f"(workers={self.workers}, dry_run={self.dry_run})")

        jobs: queue.Queue = queue.Queue(maxsize=self.workers * 2)
        meta_queue: Optional[queue.Queue] = None
        meta_thread = None
        if self.write_metadata:
            if self.writer is None:
                self.writer = ExifToolWriter()
            meta_queue = queue.Queue(maxsize=self.workers * 4)
            meta_thread = threading.Thread(
                target=self._metadata_stage, args=(meta_queue,), name="metadata-writer", daemon=True
            )
            meta_thread.start()

        with tqdm(total=len(records), desc="Copying", disable=not self.show_progress) as bar, \
                ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="copy") as pool:
            futures = [pool.submit(self._worker, jobs, meta_queue, bar) for _ in range(self.workers)]

            for rec in records:
                if not self._put(jobs, rec):
                    logging.warning("Output cancelled, no further files will be dispatched")
                    break
            for _ in range(self.workers):
                if not self._put(jobs, _STOP):
                    break

            for f in futures:
                f.result()

        if meta_thread is not None:
            meta_queue.put(_STOP)
            meta_thread.join()

        if self._first_error is not None:
            raise self._first_error

        if self._summary.metadata_failures:
            logging.warning(f"Metadata could not be written for {self._summary.metadata_failures} files")
        return self._summary

    # --- Intake and workers ---

    def _put(self, q: queue.Queue, item) -> bool:
        """Blocking put that gives up once the run is cancelled."""
        while not self._cancel.is_set():
            try:
                q.put(item, timeout=_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def _fail(self, error: Exception):
        with self._lock:
            if self._first_error is None:
                self._first_error = error
                logging.error(f"Fatal output error, cancelling: {error}")
                self._cancel.set()

    def _worker(self, jobs: queue.Queue, meta_queue: Optional[queue.Queue], bar):
        while not self._cancel.is_set():
            try:
                item = jobs.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
            if item is _STOP:
                return
            if not self._process(item, meta_queue):
                return
            with self._lock:
                bar.update(1)

    def _destination_dir(self, rec: PhotoRecord) -> Path:
        if rec.assigned_album.strip():
            return self.albums_dir / sanitize_folder(rec.assigned_album)
        return self.library_dir

    def _process(self, rec: PhotoRecord, meta_queue: Optional[queue.Queue]) -> bool:
        """Handles one record. Returns False after a fatal error."""
        dst_dir = self._destination_dir(rec)
        if not self.dry_run:
            try:
                dst_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                self._fail(FileOperationError(f"Cannot create folder {dst_dir}: {e}"))
                return False

        try:
            dest = self.reserver.reserve(dst_dir, normalized_name(rec.source_path), rec.content_hash)
        except CollisionError as e:
            self._fail(e)
            return False
        except OSError as e:
            self._fail(FileOperationError(f"Cannot resolve destination for {rec.source_path}: {e}"))
            return False

        placement = Placement(
            source=rec.source_path,
            destination=dest,
            album=rec.assigned_album,
            captured_at=rec.captured_at,
            confidence=rec.date_confidence,
            content_hash=rec.content_hash,
        )

        if self.dry_run:
            logging.info(f"[DRY RUN] Copy {rec.source_path} -> {dest}")
        else:
            logging.debug(f"Copy: {rec.source_path} -> {dest}")
            try:
                copy_file(rec.source_path, dest)
            except OSError as e:
                self._fail(FileOperationError(f"Failed to copy {rec.source_path} -> {dest}: {e}"))
                return False
            placement.copied = True
            if meta_queue is not None:
                item = WriteItem(path=dest, captured_at=rec.captured_at, metadata=rec.metadata)
                if not self._put(meta_queue, item):
                    logging.debug(f"Run cancelled, metadata not written for {dest}")

        with self._lock:
            self._summary.placements.append(placement)
            if placement.copied:
                self._summary.copied += 1
        return True

    # --- Metadata stage ---

    def _metadata_stage(self, meta_queue: queue.Queue):
        """
        Owns the exiftool process and drains the queue until the sentinel
        arrives. An unexpected error cancels the run, but the queue is still
        drained so copy workers never block on it.
        """
        batch: List[WriteItem] = []
        stopped = False
        try:
            self.writer.start()
            while True:
                item = meta_queue.get()
                if item is _STOP:
                    stopped = True
                    break
                if not has_writable_metadata(item):
                    continue
                batch.append(item)
                if len(batch) >= self.exif_batch:
                    self._flush(batch)
                    batch = []
            self._flush(batch)
        except Exception as e:
            self._fail(e)
        finally:
            while not stopped:
                stopped = meta_queue.get() is _STOP
            self.writer.close()

    def _flush(self, batch: List[WriteItem]):
        if not batch:
            return
        failures = self.writer.write_batch(batch)
        with self._lock:
            self._summary.metadata_failures += failures
