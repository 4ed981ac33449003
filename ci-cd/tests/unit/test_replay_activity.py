from __future__ import annotations

from pathlib import Path

from replay.replay_activity import ActivityEvent, iter_events, main, replay_activity
from risk.engine import AccountTakeoverEngine, in_memory_stores
from risk.risk_rules import RiskLevel


SAMPLE = Path("data") / "sample" / "activity_sample.jsonl"


def test_replay_sample_file(clock) -> None:
    engine = AccountTakeoverEngine(in_memory_stores(), clock=clock)
    metrics = replay_activity(input_path=SAMPLE, engine=engine)

    assert metrics["processed"] == 8
    assert metrics["invalid"] == 1
    assert metrics["failed_logins"] == 3
    assert metrics["levels"] == {"LOW": 3, "MEDIUM": 1, "HIGH": 1}
    assert metrics["verification_required"] == 2

    records, total = engine.list_suspicious_activities(page_size=10)
    assert total == 2
    by_user = {r.user_id: r for r in records}
    assert by_user["alice"].risk_level == RiskLevel.HIGH
    assert "MULTIPLE_FAILED_LOGINS" in by_user["alice"].details["risk_factors"]
    assert by_user["bob"].activity_type == "PASSWORD_CHANGE"


def test_replay_respects_max_events(clock) -> None:
    engine = AccountTakeoverEngine(in_memory_stores(), clock=clock)
    metrics = replay_activity(input_path=SAMPLE, engine=engine, max_events=3)
    assert metrics["processed"] == 3
    assert metrics["levels"]["LOW"] == 3


def test_invalid_lines_are_reported_not_raised(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    path.write_text(
        "\n".join(
            [
                '{"user_id": "u1", "ip": "1.1.1.1", "timestamp": "2026-10-13T10:00:00Z"}',
                "",
                '{"user_id": "u1", "ip": "1.1.1.1"}',
                "# replayed from staging",
                '{"user_id": "u1", "ip": "1.1.1.1", "timestamp": "2026-10-13T10:00:00"}',
                "",
            ]
        ),
        encoding="utf-8",
    )

    events = list(iter_events(path))
    assert [line_no for line_no, _ in events] == [1, 3, 5]
    assert isinstance(events[0][1], ActivityEvent)
    assert events[1][1] is None

    metrics = replay_activity(input_path=path, engine=AccountTakeoverEngine(in_memory_stores()))
    assert metrics["processed"] == 1
    assert metrics["invalid"] == 2


def test_main_runs_against_memory_backend(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("storage:\n  backend: memory\n", encoding="utf-8")
    main(["--config", str(cfg_path), "--input", str(SAMPLE), "--max-events", "2"])
