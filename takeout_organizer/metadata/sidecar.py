"""
Parsing of Google Photos sidecar JSON documents.

A sidecar looks roughly like:

    {
      "title": "IMG_1234.jpg",
      "description": "",
      "photoTakenTime": {"timestamp": "1577836800", ...},
      "creationTime": {"timestamp": "1578000000", ...},
      "geoData": {"latitude": 0.0, "longitude": 0.0, ...},
      "people": [{"name": "Alice"}],
      "favorited": true,
      "url": "https://photos.google.com/...",
      "appSource": {"androidPackageName": "com.instagram.android"},
      "googlePhotosOrigin": {"mobileUpload": {"deviceType": "ANDROID_PHONE", ...}}
    }

Missing or malformed fields are treated as absent; only an unreadable or
undecodable document is an error.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..exceptions import SidecarParseError
from ..models import DescriptiveMetadata, GeoData, UploadOrigin


@dataclass
class SidecarMetadata:
    taken_time: Optional[datetime] = None
    creation_time: Optional[datetime] = None
    descriptive: DescriptiveMetadata = field(default_factory=DescriptiveMetadata)


def parse_epoch(value: Any) -> Optional[datetime]:
    """Epoch seconds given as a string or a number -> aware UTC datetime."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            seconds = int(value.strip())
        except ValueError:
            return None
    elif isinstance(value, (int, float)):
        seconds = int(value)
    else:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_sidecar(path: Path) -> SidecarMetadata:
    """
    Reads one sidecar.

    Raises:
        SidecarParseError: the file cannot be read or is not a JSON object.
    """
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        raise SidecarParseError(f"Cannot parse sidecar {path}: {e}") from e
    if not isinstance(raw, dict):
        raise SidecarParseError(f"Sidecar {path} is not a JSON object")

    out = SidecarMetadata()
    out.taken_time = parse_epoch(_dict(raw.get("photoTakenTime")).get("timestamp"))
    out.creation_time = parse_epoch(_dict(raw.get("creationTime")).get("timestamp"))

    meta = out.descriptive
    meta.description = _str(raw.get("description"))
    meta.favorited = raw.get("favorited") is True
    meta.url = _str(raw.get("url"))
    meta.app_source = _str(_dict(raw.get("appSource")).get("androidPackageName"))
    meta.creation_time = out.creation_time

    people = raw.get("people")
    if isinstance(people, list):
        for person in people:
            name = _str(_dict(person).get("name"))
            if name:
                meta.people.append(name)

    geo = _dict(raw.get("geoData"))
    lat = _float(geo.get("latitude"))
    lon = _float(geo.get("longitude"))
    alt = _float(geo.get("altitude"))
    # Takeout writes all zeros when the location is unknown
    if lat or lon or alt:
        meta.geo = GeoData(
            latitude=lat,
            longitude=lon,
            altitude=alt,
            latitude_span=_float(geo.get("latitudeSpan")),
            longitude_span=_float(geo.get("longitudeSpan")),
        )

    origin_raw = _dict(raw.get("googlePhotosOrigin"))
    origin = UploadOrigin()
    origin.from_shared_album = origin_raw.get("fromSharedAlbum") is not None
    origin.web_upload = origin_raw.get("webUpload") is not None
    mobile = _dict(origin_raw.get("mobileUpload"))
    origin.device_type = _str(mobile.get("deviceType"))
    origin.device_folder = _str(_dict(mobile.get("deviceFolder")).get("localFolderName"))
    origin.mobile_upload = bool(origin.device_type or origin.device_folder)
    origin.composition_type = _str(_dict(origin_raw.get("composition")).get("type"))
    meta.origin = origin

    return out


def sidecar_timestamp(meta: SidecarMetadata) -> Optional[datetime]:
    """photoTakenTime, falling back to creationTime."""
    return meta.taken_time or meta.creation_time
