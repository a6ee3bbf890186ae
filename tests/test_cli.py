from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from autoloop import cli
from autoloop.config import AppConfig
from autoloop.errors import InvalidResponse, ProcessFailure
from autoloop.loop.models import RunRecord, TerminationOutcome
from autoloop.permissions.models import GrantAudit


def _install_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, **overrides: object) -> None:
    def fake_from_env() -> AppConfig:
        values: dict[str, object] = {
            "log_dir": str(tmp_path / "build-logs"),
            "settings_path": str(tmp_path / "settings.json"),
            "check_updates": False,
        }
        values.update(overrides)
        return AppConfig(**values)  # type: ignore[arg-type]

    monkeypatch.setattr(
        cli,
        "AppConfig",
        type("FakeConfig", (), {"from_env": staticmethod(fake_from_env)}),
    )


def _install_loop(monkeypatch: pytest.MonkeyPatch, result: object) -> dict[str, object]:
    captured: dict[str, object] = {}

    class FakeLoop:
        def __init__(self, **kwargs: object) -> None:
            captured.update(kwargs)

        def run(self, prompt: str) -> TerminationOutcome:
            captured["prompt"] = prompt
            if isinstance(result, Exception):
                raise result
            return result  # type: ignore[return-value]

    monkeypatch.setattr(cli, "RunLoop", FakeLoop)
    return captured


def test_parser_defaults() -> None:
    args = cli.build_parser().parse_args([])

    assert args.prompt is None
    assert args.prompt_file is None
    assert args.max_runs is None
    assert args.check is False
    assert args.yes is False
    assert args.no_update is False


def test_parser_accepts_all_options() -> None:
    args = cli.build_parser().parse_args(
        ["--prompt-file", "plan.txt", "--max-runs", "5", "--check", "--yes", "--no-update"]
    )

    assert args.prompt_file == "plan.txt"
    assert args.max_runs == 5
    assert args.check is True
    assert args.yes is True
    assert args.no_update is True


def test_main_requires_a_prompt(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr("sys.argv", ["autoloop"])
    _install_config(monkeypatch, tmp_path)
    captured = _install_loop(monkeypatch, RuntimeError("loop must not run"))

    assert cli.main() == 1

    out = capsys.readouterr().out
    assert "No prompt provided" in out
    assert captured == {}
    assert not (tmp_path / "build-logs").exists()


def test_main_rejects_yes_without_check(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr("sys.argv", ["autoloop", "--prompt", "x", "--yes"])
    _install_config(monkeypatch, tmp_path)

    assert cli.main() == 1
    assert "--yes only applies" in capsys.readouterr().out


def test_main_rejects_non_positive_max_runs(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr("sys.argv", ["autoloop", "--prompt", "x", "--max-runs", "0"])
    _install_config(monkeypatch, tmp_path)

    assert cli.main() == 1
    assert "--max-runs must be a positive integer" in capsys.readouterr().out


def test_main_reports_completion(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr("sys.argv", ["autoloop", "--prompt", "fix tests", "--max-runs", "5"])
    _install_config(monkeypatch, tmp_path, reader_grace_seconds=0.5)
    captured = _install_loop(
        monkeypatch,
        TerminationOutcome(status="completed", iterations=2, max_runs=5),
    )

    assert cli.main() == 0

    out = capsys.readouterr().out
    assert "All steps complete after 2 runs" in out
    assert captured["prompt"] == "fix tests"
    assert captured["max_runs"] == 5
    assert captured["log_dir"] == str(tmp_path / "build-logs")
    assert captured["reader_grace_seconds"] == 0.5


def test_main_reads_prompt_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    prompt_file = tmp_path / "plan.txt"
    prompt_file.write_text("plan from file", encoding="utf-8")
    monkeypatch.setattr("sys.argv", ["autoloop", "--prompt-file", str(prompt_file)])
    _install_config(monkeypatch, tmp_path, max_runs=9)
    captured = _install_loop(
        monkeypatch,
        TerminationOutcome(status="completed", iterations=1, max_runs=9),
    )

    assert cli.main() == 0
    assert captured["prompt"] == "plan from file"
    assert captured["max_runs"] == 9


def test_main_warns_when_budget_is_exhausted(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr("sys.argv", ["autoloop", "--prompt", "x", "--max-runs", "3"])
    _install_config(monkeypatch, tmp_path)
    _install_loop(monkeypatch, TerminationOutcome(status="exhausted", iterations=3, max_runs=3))

    assert cli.main() == 0
    assert "reached max runs (3) without completing" in capsys.readouterr().out


def test_main_stalled_run_exits_non_zero(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    record = RunRecord(
        sequence=1,
        started_at=datetime(2026, 1, 1),
        log_path=tmp_path / "run_1.log",
        returncode=0,
    )
    monkeypatch.setattr("sys.argv", ["autoloop", "--prompt", "x"])
    _install_config(monkeypatch, tmp_path, stop_on_missing_signal=True)
    _install_loop(
        monkeypatch,
        TerminationOutcome(status="stalled", iterations=1, max_runs=20, records=(record,)),
    )

    assert cli.main() == 1
    out = capsys.readouterr().out
    assert "without a DONE or CONTINUE signal" in out
    assert "run_1.log" in out


def test_main_process_failure_prints_resume_hint(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr("sys.argv", ["autoloop", "--prompt", "x", "--max-runs", "10"])
    _install_config(monkeypatch, tmp_path)
    failure = ProcessFailure(7, run=3, log_path=tmp_path / "run_3.log", remaining_runs=7)
    _install_loop(monkeypatch, failure)

    assert cli.main() == 1

    out = capsys.readouterr().out
    assert "Run 3 exited with code 7" in out
    assert "run_3.log" in out
    assert "Re-run with: autoloop --max-runs 7" in out


def test_check_mode_reports_missing_grants(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr("sys.argv", ["autoloop", "--check", "--prompt", "run make"])
    _install_config(monkeypatch, tmp_path)
    calls: list[tuple[str, str]] = []

    class FakeAuditor:
        def __init__(self, **_kwargs: object) -> None:
            pass

        def report(self, prompt: str) -> GrantAudit:
            calls.append(("report", prompt))
            return GrantAudit(previous=("git",), missing=("Bash(make:*)",))

        def apply(self, prompt: str) -> GrantAudit:
            calls.append(("apply", prompt))
            raise AssertionError("apply must not be called without --yes")

    monkeypatch.setattr(cli, "GrantAuditor", FakeAuditor)
    _install_loop(monkeypatch, RuntimeError("loop must not run"))

    assert cli.main() == 0

    out = capsys.readouterr().out
    assert calls == [("report", "run make")]
    assert "Missing permissions:" in out
    assert "Bash(make:*)" in out


def test_check_apply_invalid_response_exits_non_zero(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr("sys.argv", ["autoloop", "--check", "--yes", "--prompt", "x"])
    _install_config(monkeypatch, tmp_path)

    class FakeAuditor:
        def __init__(self, **_kwargs: object) -> None:
            pass

        def apply(self, prompt: str) -> GrantAudit:
            raise InvalidResponse("Grant list must be a JSON array, got str.")

    monkeypatch.setattr(cli, "GrantAuditor", FakeAuditor)

    assert cli.main() == 1
    out = capsys.readouterr().out
    assert "invalid response" in out
    assert "Settings left unchanged" in out


def test_render_audit_for_applied_changes() -> None:
    audit = GrantAudit(previous=("git", "curl"), missing=("npm",), updated=("git", "npm"))

    rendered = cli._render_audit(audit, ".claude/settings.json")

    assert rendered.splitlines() == ["Updated .claude/settings.json", "  + npm", "  - curl"]


def test_update_notice_respects_no_update_flag(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    checked: list[str] = []

    def fake_check(url: str, current_version: str) -> str:
        checked.append(url)
        return "9.9.9"

    monkeypatch.setattr(cli, "check_for_updates", fake_check)
    _install_config(monkeypatch, tmp_path, check_updates=True, update_url="https://example.invalid")
    _install_loop(monkeypatch, TerminationOutcome(status="completed", iterations=1, max_runs=20))

    monkeypatch.setattr("sys.argv", ["autoloop", "--prompt", "x"])
    assert cli.main() == 0
    assert "A new version of autoloop is available: 9.9.9" in capsys.readouterr().out

    monkeypatch.setattr("sys.argv", ["autoloop", "--prompt", "x", "--no-update"])
    assert cli.main() == 0
    assert "A new version" not in capsys.readouterr().out
    assert checked == ["https://example.invalid"]
