import json
import logging
from pathlib import Path

import pytest

from segmon import cli
from segmon import config as config_module


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    for key in ("DEV", "SEGMENT_MAX_BYTES", "SEGMENT_CHECK_INTERVAL_MS", "SEGMENT_TRIGGER_RATIO", "SEGMENT_EXTENSION"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SEGMON_CONFIG", str(tmp_path / "config.yaml"))
    monkeypatch.setattr(config_module, "_cfg_cache", None, raising=False)
    monkeypatch.setattr(config_module, "_search_paths", [], raising=False)
    monkeypatch.setattr(config_module, "_active_config_path", None, raising=False)
    monkeypatch.setattr(config_module, "_primary_config_path", None, raising=False)


def test_next_prints_following_segment(capsys):
    assert cli.main(["next", "/data/rec_20240101_000000_part004.mp4"]) == 0
    assert capsys.readouterr().out.strip() == "rec_20240101_000000_part005.mp4"

    assert cli.main(["next", "rec_20240101_000000.mp4", "--extension", ".mkv"]) == 0
    assert capsys.readouterr().out.strip() == "rec_20240101_000000_part001.mkv"


def test_list_outputs_text_and_json(tmp_path: Path, capsys):
    segments_dir = tmp_path / "segments"
    segments_dir.mkdir()
    for name in ("rec_part001.mp4", "rec_part000.mp4", "unrelated.log"):
        (segments_dir / name).write_bytes(b"")

    assert cli.main(["list", str(segments_dir)]) == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert lines == ["000\trec\trec_part000.mp4", "001\trec\trec_part001.mp4"]

    assert cli.main(["list", str(segments_dir), "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert [entry["index"] for entry in payload] == [0, 1]
    assert payload[0]["base"] == "rec"


def test_watch_reports_switch(tmp_path: Path, capsys):
    recording = tmp_path / "rec_part000.mp4"
    recording.write_bytes(b"x" * 200)

    code = cli.main(
        [
            "watch",
            str(recording),
            "--max-bytes",
            "100",
            "--interval-ms",
            "10",
            "--duration",
            "0.3",
        ]
    )

    assert code == 0
    out = capsys.readouterr().out
    assert f"{recording} -> {tmp_path / 'rec_part001.mp4'}" in out
    assert out.count("->") == 1


def test_watch_rejects_invalid_ratio(tmp_path: Path, capsys):
    code = cli.main(["watch", str(tmp_path / "rec_part000.mp4"), "--ratio", "3"])
    assert code == 2
    assert "Invalid segment settings" in capsys.readouterr().err


def test_verbose_logs_config_search_paths(tmp_path: Path, capsys, caplog):
    with caplog.at_level(logging.DEBUG, logger="segment_monitor"):
        assert cli.main(["-v", "next", "rec_part000.mp4"]) == 0

    assert "Config search paths:" in caplog.text
    assert str((tmp_path / "config.yaml").resolve()) in caplog.text
    assert "Active config: defaults only" in caplog.text
    assert capsys.readouterr().out.strip() == "rec_part001.mp4"
