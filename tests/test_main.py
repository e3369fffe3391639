from pathlib import Path

import pytest

from takeout_organizer import config, main as main_mod
from takeout_organizer.exceptions import DateReviewError


def test_parse_args_defaults():
    args = main_mod.parse_args(["Takeout", "Out"])
    assert args.src == Path("Takeout")
    assert args.dest == Path("Out")
    assert args.workers == config.DEFAULT_WORKERS
    assert args.exif_batch == config.DEFAULT_EXIF_BATCH
    assert not args.dry_run and not args.dates_only and not args.no_progress


def test_parse_args_flags():
    args = main_mod.parse_args([
        "--dry-run", "--dates-only", "--workers", "8", "--exif-batch", "5",
        "--only-exts", ".mp,.mov", "--report-csv", "plan.csv", "--no-progress", "-v",
    ])
    assert args.src is None
    assert args.workers == 8
    assert args.exif_batch == 5
    assert args.only_exts == ".mp,.mov"
    assert args.report_csv == Path("plan.csv")
    assert args.verbose and args.no_progress


class RecordingApp:
    instances = []

    def __init__(self, options, port=None):
        self.options = options
        self.calls = []
        RecordingApp.instances.append(self)

    def organize(self, src, dest):
        self.calls.append(("organize", src, dest))

    def dates_only(self, src):
        self.calls.append(("dates_only", src))


@pytest.fixture
def quiet_main(monkeypatch):
    RecordingApp.instances = []
    monkeypatch.setattr(main_mod, "setup_logging", lambda root, verbose: None)
    monkeypatch.setattr(main_mod, "TakeoutOrganizerApp", RecordingApp)
    monkeypatch.setattr(main_mod, "detect_exiftool", lambda: False)


def test_main_threads_options(tmp_path, quiet_main):
    main_mod.main([str(tmp_path / "in"), str(tmp_path / "out"), "--workers", "2", "--no-progress"])

    app = RecordingApp.instances[0]
    assert app.calls == [("organize", (tmp_path / "in").resolve(), (tmp_path / "out").resolve())]
    assert app.options.workers == 2
    assert app.options.exiftool_available is False
    assert app.options.show_progress is False


def test_main_prompts_for_missing_source(tmp_path, quiet_main, monkeypatch):
    monkeypatch.setattr("builtins.input", lambda label: str(tmp_path))
    main_mod.main(["--dates-only"])
    assert RecordingApp.instances[0].calls == [("dates_only", tmp_path.resolve())]


def test_main_exits_on_organizer_error(tmp_path, quiet_main, monkeypatch):
    def refuse(self, src):
        raise DateReviewError("Date review not confirmed")

    monkeypatch.setattr(RecordingApp, "dates_only", refuse)
    with pytest.raises(SystemExit) as exc:
        main_mod.main([str(tmp_path), "--dates-only"])
    assert exc.value.code == 1
