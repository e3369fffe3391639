import argparse
import logging
import shutil
import sys
from pathlib import Path

from . import config
from .console import ConsolePrompt, prompt_path
from .core import RunOptions, TakeoutOrganizerApp
from .exceptions import TakeoutOrganizerError


def setup_logging(log_root: Path, verbose: bool):
    """Sets up logging to both console and a file in the output root."""
    log_level = logging.DEBUG if verbose else logging.INFO

    # Create the root if it doesn't exist so we can log there
    log_root.mkdir(parents=True, exist_ok=True)
    log_file = log_root / "organizer.log"

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Silence chatty libraries
    logging.getLogger("exifread").setLevel(logging.ERROR)


def detect_exiftool() -> bool:
    return shutil.which(config.EXIFTOOL) is not None


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Takeout Organizer: dedupe, date and file a Google Photos export")

    p.add_argument("src", type=Path, nargs="?", default=None, help="Takeout root to scan (prompted if omitted)")
    p.add_argument("dest", type=Path, nargs="?", default=None, help="Output root (prompted if omitted)")

    p.add_argument("--dry-run", action="store_true", help="Plan and log every copy without touching disk")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p.add_argument("--dates-only", action="store_true",
                   help="Only analyze dates (skip hashing, dedup, albums, output)")
    p.add_argument("--workers", type=int, default=config.DEFAULT_WORKERS, help="Parallel copy workers")
    p.add_argument("--exif-batch", type=int, default=config.DEFAULT_EXIF_BATCH,
                   help="Batch size for exiftool metadata writes")
    p.add_argument("--only-exts", type=str, default="",
                   help="Comma-separated extensions to include (e.g. .mp,.mov,.m4v)")

    p.add_argument("--cache", type=Path, default=None,
                   help="Hash cache file (default: src/.takeout_organizer/hash_cache.json)")
    p.add_argument("--patterns", type=Path, default=None,
                   help="Custom date patterns file (default: ./.takeout_organizer/date_patterns.json)")
    p.add_argument("--exclusions", type=Path, default=None,
                   help="Date exclusions file (default: ./.takeout_organizer/date_exclusions.json)")
    p.add_argument("--report-csv", type=Path, default=None, help="Write the copy plan to this CSV")
    p.add_argument("--no-progress", action="store_true", help="Disable progress bars")

    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    port = ConsolePrompt()

    src_root = (args.src or prompt_path(port, "Enter path to Takeout root", "./Takeout")).resolve()
    dest_root = None
    if not args.dates_only:
        dest_root = (args.dest or prompt_path(port, "Enter output folder", "./Output")).resolve()

    setup_logging(dest_root if dest_root and not args.dry_run else Path.cwd(), args.verbose)

    logging.info("=== Takeout Organizer Started ===")
    logging.info(f"Source: {src_root}")
    if dest_root:
        logging.info(f"Dest:   {dest_root}")

    exiftool_available = detect_exiftool()
    if not exiftool_available:
        logging.warning("exiftool not found on PATH: metadata will not be written to copies")

    options = RunOptions(
        dry_run=args.dry_run,
        verbose=args.verbose,
        dates_only=args.dates_only,
        workers=args.workers,
        exif_batch=args.exif_batch,
        only_exts=args.only_exts,
        exiftool_available=exiftool_available,
        cache_path=args.cache,
        patterns_path=args.patterns,
        exclusions_path=args.exclusions,
        report_csv=args.report_csv,
        show_progress=not args.no_progress,
    )
    app = TakeoutOrganizerApp(options, port=port)

    try:
        if options.dates_only:
            app.dates_only(src_root)
        else:
            app.organize(src_root, dest_root)
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        sys.exit(1)
    except TakeoutOrganizerError as e:
        logging.error(str(e))
        sys.exit(1)
    except Exception:
        logging.exception("Fatal error during organization.")
        sys.exit(1)


if __name__ == "__main__":
    main()
