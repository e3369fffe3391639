import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from . import config
from .console import ConsolePrompt, prompt_album_selection
from .dates.patterns import FilenameDateGuesser
from .dates.resolver import DateProposal, DateResolver
from .dates.review import DateReviewSession
from .dates.store import load_custom_patterns, load_exclusions
from .dedup.merge import merge_identical
from .dedup.registry import build_registry
from .metadata.extract import EmbeddedDateReader
from .models import PhotoRecord, ScanEntry
from .organization.albums import assign_final_albums, list_distinct_albums
from .organization.output import OutputPipeline, OutputSummary
from .reporting import log_album_summary, log_scan_summary, write_plan_report
from .scanning.filesystem import TakeoutScanner, entries_to_records, filter_entries_by_ext
from .scanning.hasher import FileHasher, HashCache


@dataclass
class RunOptions:
    dry_run: bool = False
    verbose: bool = False
    dates_only: bool = False
    workers: int = config.DEFAULT_WORKERS
    exif_batch: int = config.DEFAULT_EXIF_BATCH
    only_exts: str = ""
    # Detected once by the CLI; nothing below looks for exiftool on its own
    exiftool_available: bool = False
    cache_path: Optional[Path] = None
    patterns_path: Optional[Path] = None
    exclusions_path: Optional[Path] = None
    report_csv: Optional[Path] = None
    show_progress: bool = True


class TakeoutOrganizerApp:
    def __init__(self,
                 options: Optional[RunOptions] = None,
                 port=None,
                 writer=None,
                 hasher: Optional[FileHasher] = None,
                 now: Optional[datetime] = None):
        self.options = options or RunOptions()
        self.port = port or ConsolePrompt()
        self.writer = writer
        self.hasher = hasher or FileHasher()
        self.now = now

    def organize(self, src_root: Path, dest_root: Path) -> Optional[OutputSummary]:
        """
        Full pipeline:
        1. Scan & pair sidecars
        2. Hash & fold identical files
        3. Resolve dates (operator review + confirmation)
        4. Re-verify duplicates and merge
        5. Pick album priority & assign
        6. Copy into the output tree, writing metadata back
        """
        opts = self.options
        entries = self._scan(src_root)
        if not entries:
            return None

        cache = HashCache.load(self._cache_path(src_root))
        registry = build_registry(entries, cache, self.hasher, opts.show_progress)
        records = list(registry)

        self._review_dates(records)

        records = merge_identical(records, self.hasher)

        albums = list_distinct_albums(records)
        logging.info(f"Distinct albums detected: {len(albums)}")
        selected = prompt_album_selection(self.port, albums)
        assign_final_albums(records, selected)
        log_album_summary(records)

        pipeline = OutputPipeline(
            dest_root,
            dry_run=opts.dry_run,
            workers=opts.workers,
            exif_batch=opts.exif_batch,
            exiftool_available=opts.exiftool_available,
            writer=self.writer,
            show_progress=opts.show_progress,
        )
        summary = pipeline.run(records)

        if opts.report_csv:
            write_plan_report(summary.placements, opts.report_csv)

        if opts.dry_run:
            logging.info(f"Dry run complete. {len(summary.placements)} files planned.")
        else:
            logging.info(f"Done. {summary.copied} files copied.")
        return summary

    def dates_only(self, src_root: Path) -> List[DateProposal]:
        """Scan and date review only: no hashing, merging, albums or output."""
        entries = self._scan(src_root)
        if not entries:
            return []
        records = entries_to_records(entries)
        proposals = self._review_dates(records)
        logging.info("Dates-only analysis complete.")
        return proposals

    # --- Steps ---

    def _scan(self, src_root: Path) -> List[ScanEntry]:
        logging.info(f"Scanning {src_root}...")
        entries = TakeoutScanner().scan(src_root)
        if not entries:
            logging.warning("No media files found.")
            return []
        log_scan_summary(entries)

        if self.options.only_exts.strip():
            entries = filter_entries_by_ext(entries, self.options.only_exts)
            if not entries:
                logging.warning("No media files matched the requested extensions.")
                return []
            logging.info(f"Filtered media by extensions, remaining: {len(entries)}")
        return entries

    def _review_dates(self, records: List[PhotoRecord]) -> List[DateProposal]:
        patterns_path = self._state_path(self.options.patterns_path, config.DATE_PATTERNS_NAME)
        exclusions_path = self._state_path(self.options.exclusions_path, config.DATE_EXCLUSIONS_NAME)
        custom = load_custom_patterns(patterns_path)
        exclusions = load_exclusions(exclusions_path)

        resolver = DateResolver(
            FilenameDateGuesser(custom, exclusions),
            EmbeddedDateReader(exiftool_available=self.options.exiftool_available),
            now=self.now,
        )
        session = DateReviewSession(
            resolver,
            self.port,
            custom=custom,
            exclusions=exclusions,
            patterns_path=patterns_path,
            exclusions_path=exclusions_path,
            show_progress=self.options.show_progress,
        )
        proposals = session.run(records)
        session.confirm_and_apply(proposals)
        return proposals

    def _cache_path(self, src_root: Path) -> Path:
        if self.options.cache_path:
            return self.options.cache_path
        return src_root / config.STATE_DIR_NAME / config.HASH_CACHE_NAME

    def _state_path(self, explicit: Optional[Path], name: str) -> Path:
        # Shared by every export organized from the same working directory
        if explicit:
            return explicit
        return Path.cwd() / config.STATE_DIR_NAME / name
