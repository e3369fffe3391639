from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from pathlib import Path
from typing import List, Optional, Set


class DateConfidence(IntEnum):
    """Ranked accuracy of a resolved capture date. Lower is better."""
    SIDECAR = 1
    FILENAME = 2
    EMBEDDED = 3
    UNKNOWN = 99


@dataclass
class ScanEntry:
    """
    A media file found during a scan, with its paired sidecar (if any).
    """
    media_path: Path
    sidecar_path: Optional[Path] = None
    album: str = ""


@dataclass
class GeoData:
    latitude: float = 0.0
    longitude: float = 0.0
    altitude: float = 0.0
    latitude_span: float = 0.0
    longitude_span: float = 0.0


@dataclass
class UploadOrigin:
    from_shared_album: bool = False
    web_upload: bool = False
    mobile_upload: bool = False
    device_type: str = ""
    device_folder: str = ""
    composition_type: str = ""


@dataclass
class DescriptiveMetadata:
    """Metadata recovered from the sidecar, written back into the copy."""
    description: str = ""
    favorited: bool = False
    people: List[str] = field(default_factory=list)
    url: str = ""
    app_source: str = ""
    creation_time: Optional[datetime] = None
    origin: UploadOrigin = field(default_factory=UploadOrigin)
    geo: Optional[GeoData] = None


@dataclass
class PhotoRecord:
    """
    One unique piece of content. Created by the registry, mutated by date
    resolution and album assignment, read by the output pipeline.
    """
    source_path: Path
    size_bytes: int = 0
    content_hash: Optional[str] = None
    hash_failed: bool = False
    sidecar_path: Optional[Path] = None

    albums: Set[str] = field(default_factory=set)
    assigned_album: str = ""

    captured_at: Optional[datetime] = None
    date_confidence: DateConfidence = DateConfidence.UNKNOWN

    metadata: DescriptiveMetadata = field(default_factory=DescriptiveMetadata)

    # Every source file folded into this record (including source_path)
    duplicate_paths: List[Path] = field(default_factory=list)


@dataclass
class HashCacheEntry:
    size: int
    mtime_ns: int
    hash: str


@dataclass
class CustomDatePattern:
    regex: str
    layout: str
