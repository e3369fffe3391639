import csv
import logging
from collections import Counter
from pathlib import Path
from typing import TYPE_CHECKING, List

from .models import DateConfidence, PhotoRecord, ScanEntry

if TYPE_CHECKING:
    from .dates.resolver import DateProposal
    from .organization.output import Placement

LIBRARY_LABEL = "(library)"


def log_scan_summary(entries: List[ScanEntry]):
    with_album = sum(1 for e in entries if e.album)
    with_sidecar = sum(1 for e in entries if e.sidecar_path and e.sidecar_path.exists())
    logging.info(
        f"Scan summary: {len(entries)} media files, {with_album} with album, {with_sidecar} with sidecar"
    )


def album_counts(records: List[PhotoRecord]) -> Counter:
    return Counter((r.assigned_album.strip() or LIBRARY_LABEL) for r in records)


def log_album_summary(records: List[PhotoRecord]):
    logging.info("Album assignment summary:")
    for album, count in sorted(album_counts(records).items()):
        logging.info(f"  {album}: {count}")


def _iso(dt) -> str:
    return dt.isoformat() if dt else ""


def format_date_review(proposals: List["DateProposal"]) -> str:
    """
    Human readable review of the proposed dates, grouped by how they were
    decided: filename overriding a sidecar, filename only, embedded tags
    only, and unknown.
    """
    overrides = [p for p in proposals if p.is_override]
    filename_only = [p for p in proposals if p.sidecar_time is None and p.filename_time is not None]
    embedded_only = [p for p in proposals if p.confidence == DateConfidence.EMBEDDED]
    unknown = [p for p in proposals if p.confidence == DateConfidence.UNKNOWN]

    lines = ["Date review:"]
    lines.append(f"Overrides (filename older than sidecar): {len(overrides)}")
    for i, p in enumerate(overrides, 1):
        lines.append(f"{i}. {p.record.source_path}")
        lines.append(f"   Sidecar: {_iso(p.sidecar_time)}  Filename: {_iso(p.filename_time)}")

    lines.append(f"Filename-only dates: {len(filename_only)}")
    for i, p in enumerate(filename_only, 1):
        lines.append(f"{i}. {p.record.source_path}")
        lines.append(f"   Filename: {_iso(p.filename_time)}")

    lines.append(f"Embedded-only dates: {len(embedded_only)}")
    for i, p in enumerate(embedded_only, 1):
        lines.append(f"{i}. {p.record.source_path}")
        lines.append(f"   Embedded: {_iso(p.embedded_time)}")

    lines.append(f"Unknown dates: {len(unknown)}")
    for i, p in enumerate(unknown, 1):
        lines.append(f"{i}. {p.record.source_path}")

    return "\n".join(lines)


def write_plan_report(placements: List["Placement"], output_csv: Path):
    """
    CSV with one row per output file: where it came from, where it went
    (or would go in a dry run), and how its date was decided.
    """
    headers = [
        "Source Path",
        "Destination Path",
        "Album",
        "Captured At",
        "Date Source",
        "Content Hash",
    ]
    output_csv.parent.mkdir(parents=True, exist_ok=True)
    with open(output_csv, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(headers)
        for p in placements:
            writer.writerow([
                str(p.source),
                str(p.destination),
                p.album or LIBRARY_LABEL,
                _iso(p.captured_at),
                p.confidence.name.lower(),
                p.content_hash or "",
            ])
    logging.info(f"Report complete: {len(placements)} rows -> {output_csv}")
