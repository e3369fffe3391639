import io
import json
import os
import subprocess
from collections import deque
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from PIL import Image

from takeout_organizer import config
from takeout_organizer.exceptions import MetadataWriteError, SidecarParseError
from takeout_organizer.metadata import extract as extract_mod, writer as writer_mod
from takeout_organizer.metadata.extract import EmbeddedDateReader, parse_embedded_date
from takeout_organizer.metadata.filetype import matches_extension, normalized_name, sniff_file_kind
from takeout_organizer.metadata.sidecar import parse_epoch, parse_sidecar, sidecar_timestamp
from takeout_organizer.metadata.writer import (
    ExifToolWriter,
    StayOpenProcess,
    WriteItem,
    build_args,
    format_exif_datetime,
    has_writable_metadata,
    origin_label,
)
from takeout_organizer.models import DescriptiveMetadata, GeoData, UploadOrigin

JAN_2020_UTC = datetime(2020, 1, 1, tzinfo=timezone.utc)


# --- Sidecars ---

def test_parse_epoch():
    assert parse_epoch("1577836800") == JAN_2020_UTC
    assert parse_epoch(1577836800) == JAN_2020_UTC
    assert parse_epoch(" 1577836800 ") == JAN_2020_UTC
    assert parse_epoch("soon") is None
    assert parse_epoch(True) is None
    assert parse_epoch(None) is None
    assert parse_epoch({"timestamp": 1}) is None


def test_parse_full_sidecar(tmp_path):
    sc = tmp_path / "IMG_1.jpg.json"
    sc.write_text(json.dumps({
        "title": "IMG_1.jpg",
        "description": " Beach day ",
        "photoTakenTime": {"timestamp": 1577836800, "formatted": "Jan 1, 2020"},
        "creationTime": {"timestamp": "1578000000"},
        "geoData": {"latitude": 48.85, "longitude": -2.35, "altitude": 35.0,
                    "latitudeSpan": 0.1, "longitudeSpan": 0.2},
        "people": [{"name": "Ann"}, {"name": ""}, "junk", {"name": "Bob"}],
        "favorited": True,
        "url": "https://photos.example/abc",
        "appSource": {"androidPackageName": "com.instagram.android"},
        "googlePhotosOrigin": {"mobileUpload": {
            "deviceType": "ANDROID_PHONE",
            "deviceFolder": {"localFolderName": "Camera"},
        }},
    }), encoding="utf-8")

    meta = parse_sidecar(sc)
    d = meta.descriptive
    assert meta.taken_time == JAN_2020_UTC
    assert meta.creation_time == datetime(2020, 1, 2, 21, 20, tzinfo=timezone.utc)
    assert d.description == "Beach day"
    assert d.people == ["Ann", "Bob"]
    assert d.favorited
    assert d.url == "https://photos.example/abc"
    assert d.app_source == "com.instagram.android"
    assert d.geo == GeoData(48.85, -2.35, 35.0, 0.1, 0.2)
    assert d.origin.mobile_upload
    assert d.origin.device_type == "ANDROID_PHONE"
    assert d.origin.device_folder == "Camera"
    assert not d.origin.web_upload


def test_zero_geo_and_missing_taken_time(tmp_path):
    sc = tmp_path / "a.json"
    sc.write_text(json.dumps({
        "creationTime": {"timestamp": "1577836800"},
        "geoData": {"latitude": 0.0, "longitude": 0.0, "altitude": 0.0},
        "googlePhotosOrigin": {"fromSharedAlbum": {}},
    }), encoding="utf-8")
    meta = parse_sidecar(sc)
    assert meta.taken_time is None
    assert sidecar_timestamp(meta) == JAN_2020_UTC
    assert meta.descriptive.geo is None
    assert meta.descriptive.origin.from_shared_album


@pytest.mark.parametrize("content", ["{broken", "[1, 2, 3]"])
def test_bad_sidecar_raises(tmp_path, content):
    sc = tmp_path / "bad.json"
    sc.write_text(content, encoding="utf-8")
    with pytest.raises(SidecarParseError):
        parse_sidecar(sc)


# --- File type sniffing ---

def _image(path: Path, fmt: str) -> Path:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), (10, 20, 30)).save(buf, format=fmt)
    path.write_bytes(buf.getvalue())
    return path


def test_sniff_kinds(tmp_path):
    assert sniff_file_kind(_image(tmp_path / "a.jpg", "JPEG")) == "jpeg"
    assert sniff_file_kind(_image(tmp_path / "b.png", "PNG")) == "png"
    assert sniff_file_kind(_image(tmp_path / "c.webp", "WEBP")) == "webp"

    heic = tmp_path / "d.heic"
    heic.write_bytes(b"\x00\x00\x00\x18ftypheic\x00\x00\x00\x00")
    assert sniff_file_kind(heic) == "heic"

    short = tmp_path / "e.jpg"
    short.write_bytes(b"\xff\xd8")
    assert sniff_file_kind(short) is None
    assert sniff_file_kind(tmp_path / "missing.jpg") is None


def test_normalized_name(tmp_path):
    assert normalized_name(_image(tmp_path / "shot.jpg", "PNG")) == "shot.png"
    assert normalized_name(_image(tmp_path / "photo.jpeg", "JPEG")) == "photo.jpeg"
    assert normalized_name(_image(tmp_path / "PHOTO.JPG", "JPEG")) == "PHOTO.JPG"
    assert normalized_name(_image(tmp_path / "noext", "JPEG")) == "noext.jpg"

    video = tmp_path / "clip.mp4"
    video.write_bytes(b"\x00\x00\x00\x18ftypisom\x00\x00\x00\x00")
    assert normalized_name(video) == "clip.mp4"


def test_matches_extension(tmp_path):
    assert matches_extension(_image(tmp_path / "a.jpg", "JPEG"))
    assert not matches_extension(_image(tmp_path / "b.jpg", "PNG"))
    # Unchecked extensions always pass
    assert matches_extension(_image(tmp_path / "c.gif", "PNG"))


# --- Embedded dates ---

def test_parse_embedded_date():
    assert parse_embedded_date("2020-01-01T00:00:00+0000") == JAN_2020_UTC
    assert parse_embedded_date("2020:01:01 12:30:00") == datetime(2020, 1, 1, 12, 30).astimezone()
    assert parse_embedded_date("0000:00:00 00:00:00") is None
    assert parse_embedded_date("") is None
    assert parse_embedded_date("yesterday") is None


def test_exifread_reads_image_datetime(tmp_path):
    img = Image.new("RGB", (4, 4))
    exif = Image.Exif()
    exif[0x0132] = "2018:07:04 10:11:12"  # Image DateTime
    path = tmp_path / "tagged.jpg"
    img.save(path, format="JPEG", exif=exif)

    reader = EmbeddedDateReader(exiftool_available=False)
    assert reader.read_capture_date(path) == datetime(2018, 7, 4, 10, 11, 12).astimezone()
    assert reader.read_capture_date(_image(tmp_path / "plain.jpg", "JPEG")) is None


def test_exiftool_reader_parses_json(tmp_path, monkeypatch):
    captured = {}

    def fake_check_output(cmd, **kwargs):
        captured["cmd"] = cmd
        return json.dumps([{"SourceFile": "x", "CreateDate": "2019-05-05T05:05:05+0200"}])

    monkeypatch.setattr(subprocess, "check_output", fake_check_output)
    reader = EmbeddedDateReader(exiftool_available=True)
    dt = reader.read_capture_date(tmp_path / "clip.mp4")

    assert dt == datetime(2019, 5, 5, 5, 5, 5, tzinfo=timezone(timedelta(hours=2)))
    assert captured["cmd"][0] == config.EXIFTOOL
    assert "-DateTimeOriginal" in captured["cmd"]


def test_exiftool_reader_failure_is_none(tmp_path, monkeypatch):
    def boom(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd)

    monkeypatch.setattr(subprocess, "check_output", boom)
    assert EmbeddedDateReader(exiftool_available=True).read_capture_date(tmp_path / "x.mp4") is None


class FakeTrack:
    def __init__(self, track_type, **fields):
        self.track_type = track_type
        self.__dict__.update(fields)


def test_mediainfo_reads_video_without_exiftool(tmp_path, monkeypatch):
    tracks = [
        FakeTrack("Video", encoded_date="UTC 2001-01-01 00:00:00"),
        FakeTrack("General", recorded_date=None, encoded_date="2019-05-05 05:05:05 UTC"),
    ]
    monkeypatch.setattr(extract_mod.MediaInfo, "parse", lambda path: type("MI", (), {"tracks": tracks})())

    dt = EmbeddedDateReader(exiftool_available=False).read_capture_date(tmp_path / "clip.mp4")
    assert dt == datetime(2019, 5, 5, 5, 5, 5, tzinfo=timezone.utc)


def test_mediainfo_failure_is_none(tmp_path, monkeypatch):
    def boom(path):
        raise OSError("no libmediainfo")

    monkeypatch.setattr(extract_mod.MediaInfo, "parse", boom)
    assert EmbeddedDateReader().read_capture_date(tmp_path / "clip.mov") is None


# --- Writer arguments ---

def test_origin_label():
    assert origin_label(UploadOrigin()) == ""
    origin = UploadOrigin(from_shared_album=True, mobile_upload=True, device_type="IOS_PHONE",
                          composition_type="COLLAGE")
    assert origin_label(origin) == "gphotos:fromSharedAlbum,mobileUpload,composition=COLLAGE,deviceType=IOS_PHONE"


def test_format_exif_datetime():
    assert format_exif_datetime(JAN_2020_UTC) == "2020:01:01 00:00:00+00:00"
    tz = timezone(timedelta(hours=-5, minutes=-30))
    assert format_exif_datetime(datetime(2020, 1, 1, 8, 0, tzinfo=tz)) == "2020:01:01 08:00:00-05:30"


def test_build_args_for_photo(tmp_path, make_jpeg):
    path = make_jpeg(tmp_path / "B.jpg")
    meta = DescriptiveMetadata(
        description="Beach",
        favorited=True,
        people=["Ann", " "],
        url="https://photos.example/abc",
        app_source="com.example",
        creation_time=JAN_2020_UTC,
        origin=UploadOrigin(web_upload=True),
        geo=GeoData(latitude=-33.5, longitude=151.25, altitude=10.0),
    )
    args = build_args(WriteItem(path, JAN_2020_UTC, meta))

    assert args[-1] == str(path)
    assert "-DateTimeOriginal=2020:01:01 00:00:00+00:00" in args
    assert "-CreateDate=2020:01:01 00:00:00+00:00" in args
    assert not any(a.startswith("-MediaCreateDate") for a in args)
    assert "-XMP:CreateDate=2020:01:01 00:00:00+00:00" in args
    assert "-GPSLatitude*=-33.500000" in args
    assert "-GPSLongitude*=151.250000" in args
    assert "-ImageDescription=Beach" in args
    assert "-XMP:Description=Beach" in args
    assert "-XMP:Rating=5" in args
    assert args.count("-XMP:PersonInImage+=Ann") == 1
    assert "-XMP:Subject+=Ann" in args
    assert "-XMP:Source=https://photos.example/abc" in args
    assert "-XMP:CreatorTool=com.example" in args
    assert "-XMP:Label=gphotos:webUpload" in args


def test_build_args_for_video_adds_track_dates(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypisom\x00\x00\x00\x00")
    args = build_args(WriteItem(path, JAN_2020_UTC))
    assert "-MediaCreateDate=2020:01:01 00:00:00+00:00" in args
    assert "-TrackCreateDate=2020:01:01 00:00:00+00:00" in args


def test_build_args_skips(tmp_path):
    png_named_jpg = _image(tmp_path / "fake.jpg", "PNG")
    assert build_args(WriteItem(png_named_jpg, JAN_2020_UTC)) is None
    other = tmp_path / "x.bmp"
    other.write_bytes(b"BM")
    assert build_args(WriteItem(other, JAN_2020_UTC)) is None
    assert build_args(WriteItem(_image(tmp_path / "ok.jpg", "JPEG"))) is None
    assert not has_writable_metadata(WriteItem(tmp_path / "ok.jpg"))


# --- Writer execution ---

class FakeCompleted:
    def __init__(self, returncode, stderr=""):
        self.returncode = returncode
        self.stdout = ""
        self.stderr = stderr


def _items(tmp_path, make_jpeg, n):
    return [WriteItem(make_jpeg(tmp_path / f"p{i}.jpg"), JAN_2020_UTC) for i in range(n)]


def test_combined_batch_success(tmp_path, make_jpeg, monkeypatch):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return FakeCompleted(0)

    monkeypatch.setattr(writer_mod.subprocess, "run", fake_run)
    writer = ExifToolWriter()
    assert writer.write_batch(_items(tmp_path, make_jpeg, 3)) == 0

    assert len(calls) == 1
    cmd = calls[0]
    assert cmd.count("-execute") == 2
    assert cmd[-len(config.EXIFTOOL_COMMON_ARGS) - 1:] == ["-common_args"] + config.EXIFTOOL_COMMON_ARGS
    assert writer.invocations == 1


def test_failed_batch_retries_each_file(tmp_path, make_jpeg, monkeypatch):
    items = _items(tmp_path, make_jpeg, 3)
    bad = str(items[1].path)
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        if "-execute" in cmd or cmd[-1] == bad:
            return FakeCompleted(1, "Error: broken file")
        return FakeCompleted(0)

    monkeypatch.setattr(writer_mod.subprocess, "run", fake_run)
    writer = ExifToolWriter()
    retried = []
    real_write_file = writer.write_file
    monkeypatch.setattr(writer, "write_file", lambda item: retried.append(item.path) or real_write_file(item))

    assert writer.write_batch(items) == 1
    assert retried == [i.path for i in items]
    # One combined attempt, then one single call per file
    assert len(calls) == 4
    assert [c[-1] for c in calls[1:]] == [str(i.path) for i in items]
    assert calls[1][:len(config.EXIFTOOL_COMMON_ARGS) + 1] == [config.EXIFTOOL] + config.EXIFTOOL_COMMON_ARGS


def test_write_file_raises(tmp_path, make_jpeg, monkeypatch):
    monkeypatch.setattr(writer_mod.subprocess, "run", lambda cmd, **kw: FakeCompleted(2, "nope"))
    with pytest.raises(MetadataWriteError):
        ExifToolWriter().write_file(WriteItem(make_jpeg(tmp_path / "a.jpg"), JAN_2020_UTC))


class KeepOpenBuffer(io.StringIO):
    def close(self):
        self.was_closed = True


class FakeStayOpen:
    def __init__(self, responses):
        self.stdin = KeepOpenBuffer()
        self.stdout = io.StringIO(responses)
        self.exited = False

    def poll(self):
        return 0 if self.exited else None

    def wait(self, timeout=None):
        self.exited = True
        return 0

    def kill(self):
        self.exited = True


def test_stay_open_batch_retries_unconfirmed(tmp_path, make_jpeg, monkeypatch):
    responses = (
        "    1 image files updated\n{ready}\n"
        "    0 image files updated\n    1 files weren't updated due to errors\n{ready}\n"
    )
    proc = FakeStayOpen(responses)
    popen_calls = []

    def fake_popen(cmd, **kwargs):
        popen_calls.append(cmd)
        return proc

    runs = []
    monkeypatch.setattr(writer_mod.subprocess, "Popen", fake_popen)
    monkeypatch.setattr(writer_mod.subprocess, "run", lambda cmd, **kw: runs.append(cmd) or FakeCompleted(0))

    items = _items(tmp_path, make_jpeg, 2)
    writer = ExifToolWriter()
    writer.start()
    assert writer.write_batch(items) == 0
    writer.close()

    assert popen_calls[0][:4] == [config.EXIFTOOL, "-stay_open", "True", "-@"]
    sent = proc.stdin.getvalue().splitlines()
    assert sent.count("-execute") == 2
    assert sent[-2:] == ["-stay_open", "False"]
    # Only the unconfirmed second file was retried
    assert [r[-1] for r in runs] == [str(items[1].path)]
    assert writer.invocations == 2


def test_start_failure_falls_back_to_combined(tmp_path, make_jpeg, monkeypatch):
    def no_exiftool(cmd, **kwargs):
        raise FileNotFoundError("exiftool")

    runs = []
    monkeypatch.setattr(writer_mod.subprocess, "Popen", no_exiftool)
    monkeypatch.setattr(writer_mod.subprocess, "run", lambda cmd, **kw: runs.append(cmd) or FakeCompleted(0))

    writer = ExifToolWriter()
    writer.start()
    assert writer.write_batch(_items(tmp_path, make_jpeg, 2)) == 0
    assert len(runs) == 1
    assert "-execute" in runs[0]


class BoundedPipeExifTool:
    """
    Answers each '-execute' the way 'exiftool -stay_open' does, but holds at
    most `capacity` unread answers, like a full stdout pipe.
    """

    def __init__(self, capacity=2):
        self.stdin = self.stdout = self
        self.capacity = capacity
        self.pending = ""
        self.unread = deque()
        self.executed = 0
        self.exited = False

    def write(self, text):
        self.pending += text
        while "\n" in self.pending:
            line, self.pending = self.pending.split("\n", 1)
            if line != "-execute":
                continue
            if len(self.unread) >= 2 * self.capacity:
                raise AssertionError("exiftool output not read while still sending files")
            self.executed += 1
            self.unread.extend(["    1 image files updated\n", "{ready}\n"])

    def flush(self):
        pass

    def close(self):
        pass

    def readline(self):
        return self.unread.popleft() if self.unread else ""

    def poll(self):
        return 0 if self.exited else None

    def wait(self, timeout=None):
        self.exited = True
        return 0

    def kill(self):
        self.exited = True


def test_stay_open_large_batch_reads_as_it_writes(monkeypatch):
    tool = BoundedPipeExifTool()
    monkeypatch.setattr(writer_mod.subprocess, "Popen", lambda cmd, **kwargs: tool)

    arg_lists = [["-DateTimeOriginal=2020:01:01 00:00:00+00:00", f"/photos/{i:05d}.jpg"] for i in range(4000)]
    proc = StayOpenProcess()
    assert proc.execute_all(arg_lists) == [True] * 4000
    assert tool.executed == 4000
    proc.close()


def test_stay_open_sends_undecodable_paths_as_raw_bytes(monkeypatch):
    raw = io.BytesIO()
    fake = FakeStayOpen("    1 image files updated\n{ready}\n")

    def fake_popen(cmd, **kwargs):
        fake.stdin = io.TextIOWrapper(raw, encoding=kwargs["encoding"], errors=kwargs.get("errors", "strict"))
        return fake

    monkeypatch.setattr(writer_mod.subprocess, "Popen", fake_popen)
    name = os.fsdecode(b"/photos/bad\xff.jpg")

    proc = StayOpenProcess()
    assert proc.execute_all([["-Rating=5", name]]) == [True]
    assert b"/photos/bad\xff.jpg\n-execute\n" in raw.getvalue()
