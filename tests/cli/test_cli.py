from __future__ import annotations

import json
import logging

import pytest

from campaign_lab.cli import main


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_plan_prints_json(capsys) -> None:
    assert main(["plan", "--variants", "3", "--audience", "70000"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["min_sample_size"] == 4500
    assert out["estimated_duration_days"] == 1
    assert out["ab_test_eligible"] is True
    assert out["allocation"]["shares"] == [50.0, 25.0, 25.0]


def test_plan_zero_traffic(capsys) -> None:
    assert main(["plan", "--variants", "2", "--audience", "3"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["estimated_duration_days"] is None
    assert out["error"] == "DIVIDE_BY_ZERO_GUARD"
    assert out["ab_test_eligible"] is False


def test_simulate_is_reproducible(capsys) -> None:
    argv = ["simulate", "--variants", "3", "--ticks", "200", "--seed", "7"]
    assert main(argv) == 0
    first = json.loads(capsys.readouterr().out)
    assert main(argv) == 0
    second = json.loads(capsys.readouterr().out)
    assert first == second
    assert len(first["stats"]) == 3
    assert first["phase"] == "running"
    assert abs(sum(first["next_shares"]) - 100.0) < 0.2


def test_simulate_apply_winner(capsys) -> None:
    assert main(["simulate", "--ticks", "4000", "--seed", "42", "--apply-winner"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["winners"] == ["B"]
    assert out["applied_winner"] == "B"
    assert out["phase"] == "winner_declared"


@pytest.mark.parametrize(
    "argv",
    [
        ["plan", "--variants", "0", "--audience", "10"],
        ["plan", "--variants", "11", "--audience", "10"],
        ["simulate", "--variants", "1", "--ticks", "1"],
        ["simulate", "--variants", "11", "--ticks", "1"],
    ],
)
def test_variant_count_out_of_range_is_usage_error(argv, capsys) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    assert exc_info.value.code == 2
    assert "--variants must be between" in capsys.readouterr().err


def test_plan_accepts_single_variant(capsys) -> None:
    assert main(["plan", "--variants", "1", "--audience", "7000"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["min_sample_size"] == 1500
