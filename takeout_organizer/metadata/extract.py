import logging
import subprocess
import json
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Dict, Any

import exifread
from pymediainfo import MediaInfo

from .. import config


class EmbeddedDateReader:
    """
    Reads the capture date stored inside the media file itself.

    Strategies:
      - exiftool (robust, covers video containers) when the capability
        flag says it is installed.
      - 'exifread' (Python-native) for still images otherwise.
      - 'pymediainfo' for video containers otherwise.
    """

    def __init__(self, exiftool_available: bool = False):
        self.exiftool_available = exiftool_available

    def read_capture_date(self, path: Path) -> Optional[datetime]:
        """Returns an aware datetime, or None if no usable tag was found."""
        if self.exiftool_available:
            try:
                return self._read_exiftool(path)
            except (OSError, subprocess.CalledProcessError, ValueError) as e:
                # Only log at debug level to avoid spamming console
                logging.debug(f"ExifTool failed for {path}: {e}")
                return None

        ext = path.suffix.lower()
        if ext in config.STILL_EXTS:
            return self._read_exifread(path)
        if ext in config.VIDEO_EXTS:
            return self._read_mediainfo(path)
        return None

    # --- Internal Extraction Helpers ---

    def _read_exiftool(self, path: Path) -> Optional[datetime]:
        cmd = [config.EXIFTOOL, "-j"]
        cmd += [f"-{tag}" for tag in config.EMBEDDED_DATE_TAGS]
        cmd += ["-d", "%Y-%m-%dT%H:%M:%S%z", str(path)]

        out = subprocess.check_output(cmd, stderr=subprocess.DEVNULL, text=True)
        rows = json.loads(out)
        if not rows:
            return None

        tags: Dict[str, Any] = rows[0]
        for tag in config.EMBEDDED_DATE_TAGS:
            dt = parse_embedded_date(str(tags.get(tag) or ""))
            if dt:
                return dt
        return None

    def _read_exifread(self, path: Path) -> Optional[datetime]:
        try:
            with path.open('rb') as f:
                # details=False speeds up processing significantly
                tags = exifread.process_file(f, details=False)
        except Exception as e:
            # exifread raises a variety of errors on truncated files
            logging.debug(f"ExifRead failed for {path}: {e}")
            return None

        for tag in config.EXIFREAD_DATE_TAGS:
            if tag in tags:
                dt = parse_embedded_date(str(tags[tag]))
                if dt:
                    return dt
        return None

    def _read_mediainfo(self, path: Path) -> Optional[datetime]:
        try:
            mi = MediaInfo.parse(str(path))
        except Exception as e:
            logging.debug(f"MediaInfo failed for {path}: {e}")
            return None

        for track in mi.tracks:
            if track.track_type != "General":
                continue
            for field in config.MEDIAINFO_DATE_FIELDS:
                val = getattr(track, field, None)
                if not val:
                    continue
                # "2020-01-01 12:00:00 UTC" or "UTC 2020-01-01 12:00:00"
                text = str(val)
                dt = parse_embedded_date(text.replace("UTC", "").strip().replace(" ", "T", 1))
                if dt and "UTC" in text:
                    dt = dt.replace(tzinfo=timezone.utc)
                if dt:
                    return dt
        return None


def parse_embedded_date(value: str) -> Optional[datetime]:
    """
    Handles the formats exiftool and exifread produce:
      2020-01-01T12:00:00+0100, 2020-01-01T12:00:00, 2020:01:01 12:00:00

    Values without an offset are taken as local time.
    """
    value = value.strip()
    if not value or "0000:00:00" in value or "0000-00-00" in value:
        return None

    for layout in ("%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S", "%Y:%m:%d %H:%M:%S"):
        try:
            dt = datetime.strptime(value, layout)
        except ValueError:
            continue
        return dt if dt.tzinfo else dt.astimezone()
    return None
