"""
Metadata writeback through the exiftool command line utility.

Two invocation modes are used:
  - one-shot: a fresh 'exiftool' process per file (or per combined batch),
    with backups disabled and originals overwritten.
  - stay-open: one long-lived 'exiftool -stay_open True -@ -' process fed
    newline-delimited arguments, each file terminated by '-execute'.

Failed batches are retried file by file in one-shot mode, so one bad file
cannot void the rest of its batch.
"""
import logging
import re
import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .. import config
from ..exceptions import MetadataWriteError
from ..models import DescriptiveMetadata, UploadOrigin
from .filetype import matches_extension

_UPDATED_RE = re.compile(r'^\s*(\d+) image files (updated|unchanged)', re.MULTILINE)


@dataclass
class WriteItem:
    path: Path
    captured_at: Optional[datetime] = None
    metadata: DescriptiveMetadata = field(default_factory=DescriptiveMetadata)


def origin_label(origin: UploadOrigin) -> str:
    """e.g. 'gphotos:mobileUpload,deviceType=ANDROID_PHONE'"""
    parts = []
    if origin.from_shared_album:
        parts.append("fromSharedAlbum")
    if origin.web_upload:
        parts.append("webUpload")
    if origin.mobile_upload:
        parts.append("mobileUpload")
    if origin.composition_type:
        parts.append(f"composition={origin.composition_type}")
    if origin.device_type:
        parts.append(f"deviceType={origin.device_type}")
    if origin.device_folder:
        parts.append(f"deviceFolder={origin.device_folder}")
    if not parts:
        return ""
    return config.ORIGIN_LABEL_PREFIX + ",".join(parts)


def has_writable_metadata(item: WriteItem) -> bool:
    meta = item.metadata
    return bool(
        item.captured_at
        or meta.creation_time
        or meta.geo
        or meta.description
        or meta.favorited
        or meta.url
        or meta.app_source
        or any(p.strip() for p in meta.people)
        or origin_label(meta.origin)
    )


def format_exif_datetime(dt: datetime) -> str:
    """'2020:01:01 00:00:00+00:00'; naive values are taken as local time."""
    if dt.tzinfo is None:
        dt = dt.astimezone()
    ts = dt.strftime("%Y:%m:%d %H:%M:%S%z")
    return ts[:-2] + ":" + ts[-2:]


def build_args(item: WriteItem) -> Optional[List[str]]:
    """
    exiftool arguments for one file, ending with the file path.

    Returns None when the format is not writable, the header contradicts
    the extension, or there is nothing to write.
    """
    ext = item.path.suffix.lower()
    if ext not in config.WRITABLE_EXTS:
        return None
    if not matches_extension(item.path):
        logging.debug(f"Skipping metadata for {item.path}: header does not match extension")
        return None

    meta = item.metadata
    args: List[str] = []

    if item.captured_at:
        ts = format_exif_datetime(item.captured_at)
        args += [f"-DateTimeOriginal={ts}", f"-CreateDate={ts}"]
        if ext in config.VIDEO_EXTS:
            args += [f"-MediaCreateDate={ts}", f"-TrackCreateDate={ts}"]

    if meta.creation_time:
        args.append(f"-XMP:CreateDate={format_exif_datetime(meta.creation_time)}")

    if meta.geo:
        # The '*' form also sets the N/S, E/W and above/below refs from the sign
        args += [
            f"-GPSLatitude*={meta.geo.latitude:f}",
            f"-GPSLongitude*={meta.geo.longitude:f}",
            f"-GPSAltitude*={meta.geo.altitude:f}",
        ]

    if meta.description:
        args += [f"-ImageDescription={meta.description}", f"-XMP:Description={meta.description}"]

    if meta.favorited:
        args.append("-XMP:Rating=5")

    for name in meta.people:
        name = name.strip()
        if name:
            args += [f"-XMP:PersonInImage+={name}", f"-XMP:Subject+={name}"]

    if meta.url:
        args.append(f"-XMP:Source={meta.url}")
    if meta.app_source:
        args.append(f"-XMP:CreatorTool={meta.app_source}")

    label = origin_label(meta.origin)
    if label:
        args.append(f"-XMP:Label={label}")

    if not args:
        return None
    args.append(str(item.path))
    return args


class StayOpenProcess:
    """
    A persistent 'exiftool -stay_open' process.

    Arguments are written one per line; exiftool answers every '-execute'
    with its output followed by a '{ready}' line. Each answer is read
    before the next file is sent, so neither pipe can fill up.
    """

    def __init__(self):
        cmd = [config.EXIFTOOL, "-stay_open", "True", "-@", "-",
               "-common_args", "-overwrite_original", "-m"]
        self.proc = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            # Paths that are not valid UTF-8 go through as their raw bytes
            errors="surrogateescape",
        )

    def execute_all(self, arg_lists: List[List[str]]) -> List[bool]:
        """Returns whether each file reported an update."""
        if self.proc.stdin is None or self.proc.stdout is None:
            raise MetadataWriteError("exiftool process has no pipes")

        results = []
        for args in arg_lists:
            for arg in args:
                # Argfile lines cannot carry line breaks
                self.proc.stdin.write(arg.replace("\r", " ").replace("\n", " ") + "\n")
            self.proc.stdin.write("-execute\n")
            self.proc.stdin.flush()
            results.append(_reports_update(self._read_response()))
        return results

    def _read_response(self) -> str:
        lines = []
        while True:
            line = self.proc.stdout.readline()
            if not line:
                raise MetadataWriteError("exiftool exited unexpectedly")
            if line.strip() == config.EXIFTOOL_READY_MARKER:
                return "".join(lines)
            lines.append(line)

    def close(self):
        if self.proc.poll() is not None:
            return
        try:
            self.proc.stdin.write("-stay_open\nFalse\n")
            self.proc.stdin.flush()
            self.proc.stdin.close()
            self.proc.wait(timeout=30)
        except (OSError, subprocess.TimeoutExpired) as e:
            logging.warning(f"exiftool did not shut down cleanly: {e}")
            self.proc.kill()


def _reports_update(output: str) -> bool:
    if "weren't updated" in output:
        return False
    return any(int(m.group(1)) > 0 for m in _UPDATED_RE.finditer(output))


class ExifToolWriter:
    """
    Writes recovered metadata into copied files.

    Call start() to launch the stay-open process; without it (or if it
    fails to launch) batches use a single combined one-shot invocation.
    """

    def __init__(self):
        self._process: Optional[StayOpenProcess] = None
        self.invocations = 0

    def start(self):
        try:
            self._process = StayOpenProcess()
        except OSError as e:
            logging.warning(f"Persistent exiftool unavailable, using one-shot batches: {e}")
            self._process = None

    def close(self):
        if self._process is not None:
            self._process.close()
            self._process = None

    def write_file(self, item: WriteItem):
        """One-shot write for a single file. Raises MetadataWriteError."""
        args = build_args(item)
        if args is None or not has_writable_metadata(item):
            return
        self._run_single(args)

    def write_batch(self, items: List[WriteItem]) -> int:
        """
        Writes a batch and returns the number of files that still failed
        after their individual retry.
        """
        writable = []
        pending = []
        for item in items:
            if not has_writable_metadata(item):
                continue
            args = build_args(item)
            if args is not None:
                writable.append(item)
                pending.append(args)
        if not pending:
            return 0

        try:
            if self._process is not None:
                self.invocations += 1
                outcome = self._process.execute_all(pending)
            else:
                self._run_combined(pending)
                outcome = [True] * len(pending)
        except (OSError, ValueError, MetadataWriteError) as e:
            logging.warning(f"Metadata batch of {len(pending)} failed, retrying individually: {e}")
            if self._process is not None:
                # The stream is out of sync after a failure mid-batch
                self._process.close()
                self._process = None
            outcome = [False] * len(pending)

        failures = 0
        for item, ok in zip(writable, outcome):
            if ok:
                continue
            try:
                self.write_file(item)
            except MetadataWriteError as e:
                logging.error(str(e))
                failures += 1
        return failures

    def _run_single(self, args: List[str]):
        self._run([config.EXIFTOOL] + config.EXIFTOOL_COMMON_ARGS + args, args[-1])

    def _run_combined(self, pending: List[List[str]]):
        cmd = [config.EXIFTOOL]
        for i, args in enumerate(pending):
            if i:
                cmd.append("-execute")
            cmd += args
        # Options before the first -execute would only apply to the first file
        cmd += ["-common_args"] + config.EXIFTOOL_COMMON_ARGS
        self._run(cmd, f"batch of {len(pending)}")

    def _run(self, cmd: List[str], target: str):
        self.invocations += 1
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False,
                                    stdin=subprocess.DEVNULL)
        except OSError as e:
            raise MetadataWriteError(f"exiftool failed for {target}: {e}") from e
        if result.returncode != 0:
            out = (result.stderr or result.stdout or "").strip()
            raise MetadataWriteError(f"exiftool failed for {target}: exit {result.returncode} ({out})")
