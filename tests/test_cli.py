"""Tests for the command-line interface."""

import json

import pytest

from stationplan.cli import build_parser, main

TOURNAMENT = """
tournament_id: cli-cup
config:
  start_time: 2026-05-02T10:00:00
  end_time: 2026-05-02T11:00:00
  match_duration: 15
  buffer_time: 5
stations:
  - {station_id: s1}
  - {station_id: s2}
matches:
  - {match_id: m1, side_a: [a], side_b: [b]}
  - {match_id: m2, side_a: [c], side_b: [d]}
  - {match_id: m3, side_a: [a], side_b: [c]}
"""


@pytest.fixture
def tournament_file(tmp_path, monkeypatch):
    for name in ("STATIONPLAN_ALGORITHM", "STATIONPLAN_SEED", "STATIONPLAN_CSP_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "tournament.yaml"
    path.write_text(TOURNAMENT)
    return path


def test_prints_report_and_schedule(tournament_file, capsys):
    assert main([str(tournament_file)]) == 0

    out = capsys.readouterr().out
    assert "Schedule Report" in out
    assert "FULL SCHEDULE" in out
    assert "m3" in out


def test_json_output(tournament_file, capsys):
    assert main([str(tournament_file), "--json", "--algorithm", "backtracking"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["algorithm_used"] == "backtracking"
    assert {s["match_id"] for s in payload["schedule"]} == {"m1", "m2", "m3"}


def test_delay_option(tournament_file, capsys):
    assert main([str(tournament_file), "--json", "--delay", "slot-m1:10"]) == 0

    payload = json.loads(capsys.readouterr().out)
    [update] = payload["updates"]
    assert update["slot_ids"] == ["slot-m1"]
    assert update["delay_minutes"] == 10


def test_unknown_slot_delay_fails(tournament_file, capsys):
    assert main([str(tournament_file), "--delay", "slot-nope:5"]) == 1
    assert "Slot slot-nope not found" in capsys.readouterr().err


def test_missing_file(tmp_path, capsys):
    assert main([str(tmp_path / "nope.yaml")]) == 1
    assert "not found" in capsys.readouterr().err


def test_invalid_file(tmp_path, capsys):
    path = tmp_path / "bad.yaml"
    path.write_text("config: {}\n")
    assert main([str(path)]) == 1
    assert "Error" in capsys.readouterr().err


def test_malformed_yaml(tmp_path, capsys):
    path = tmp_path / "broken.yaml"
    path.write_text("config: [unclosed\n")
    assert main([str(path)]) == 1
    assert "invalid YAML" in capsys.readouterr().err


def test_environment_algorithm(tournament_file, capsys, monkeypatch):
    monkeypatch.setenv("STATIONPLAN_ALGORITHM", "constraint_satisfaction")
    assert main([str(tournament_file), "--json"]) == 0
    assert json.loads(capsys.readouterr().out)["algorithm_used"] == "constraint_satisfaction"


def test_unplaceable_matches_exit_code(tmp_path, capsys):
    path = tmp_path / "full.yaml"
    path.write_text(TOURNAMENT.replace("11:00:00", "10:20:00"))
    assert main([str(path), "--json"]) == 2


def test_delay_argument_parsing():
    parser = build_parser()
    args = parser.parse_args(["t.yaml", "--delay", "slot-r1:m1:7.5"])
    assert args.delay == [("slot-r1:m1", 7.5)]

    with pytest.raises(SystemExit):
        parser.parse_args(["t.yaml", "--delay", "slot-r1"])
