"""Command-line interface for autoloop."""

from __future__ import annotations

import argparse
import dataclasses
import logging
from pathlib import Path
from typing import cast

from . import __version__
from .assistant.client import AssistantClient
from .config import AppConfig
from .errors import ConfigurationError, InvalidResponse, ProcessFailure
from .loop.models import TerminationOutcome
from .loop.runner import RunLoop, load_prompt
from .permissions.grants import GrantAuditor, GrantStore
from .permissions.models import GrantAudit
from .updater import check_for_updates

LOGGER = logging.getLogger(__name__)

EPILOG = """\
examples:
  autoloop --prompt "fix all failing tests"       custom task
  autoloop --prompt-file tasks/build-plan.txt     prompt from a file
  autoloop --max-runs 5 --prompt "add logging"    limit runs
  autoloop --check --prompt-file plan.txt         list missing permissions
  autoloop --check --yes --prompt-file plan.txt   add them to the settings file

The assistant outputs DONE when finished and CONTINUE when there is more work.
The full JSON stream goes to the log directory; assistant text is shown here.
"""


class CLIArgs(argparse.Namespace):
    prompt: str | None
    prompt_file: str | None
    max_runs: int | None
    check: bool
    yes: bool
    no_update: bool


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autoloop",
        description="Run an AI coding assistant in a loop until it outputs DONE.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--prompt", help="Inline prompt to run repeatedly")
    parser.add_argument("--prompt-file", help="Read the prompt from a file")
    parser.add_argument(
        "--max-runs",
        type=int,
        help="Maximum number of runs (default: 20, or max_runs from config)",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Ask the assistant which permissions the prompt needs instead of running it",
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="With --check, write the missing permissions to the settings file",
    )
    parser.add_argument("--no-update", action="store_true", help="Skip the update check")
    return parser


def build_config(args: CLIArgs, base: AppConfig) -> AppConfig:
    """Apply command-line flags on top of the environment/file configuration."""
    if args.max_runs is not None and args.max_runs <= 0:
        msg = f"--max-runs must be a positive integer, got {args.max_runs}."
        raise ConfigurationError(msg)
    if args.yes and not args.check:
        msg = "--yes only applies together with --check."
        raise ConfigurationError(msg)
    return dataclasses.replace(
        base,
        max_runs=args.max_runs if args.max_runs is not None else base.max_runs,
        check_updates=base.check_updates and not args.no_update,
        audit_mode=args.check,
        apply_grants=args.yes,
    )


def main() -> int:
    parser = build_parser()
    args = cast(CLIArgs, parser.parse_args())

    try:
        config = build_config(args, AppConfig.from_env())
    except ConfigurationError as exc:
        print(f"Error: {exc}")
        print("Run autoloop --help for usage.")
        return 1
    logging.basicConfig(level=config.log_level)

    if config.check_updates:
        _notify_update(config)

    try:
        prompt = load_prompt(args.prompt, args.prompt_file)
        client = _create_client(config)
        if config.audit_mode:
            return _run_audit(config, client, prompt)
        return _run_loop(config, client, prompt)
    except ConfigurationError as exc:
        print(f"Error: {exc}")
        print("Run autoloop --help for usage.")
        return 1
    except ProcessFailure as exc:
        print("")
        print(f"Error: {exc}")
        if exc.resume_hint:
            print(f"   Re-run with: {exc.resume_hint}")
        return 1
    except InvalidResponse as exc:
        print(f"Error: the assistant returned an invalid response: {exc}")
        print(f"Settings left unchanged: {config.settings_path}")
        return 1


def _create_client(config: AppConfig) -> AssistantClient:
    try:
        return AssistantClient(config.assistant_command)
    except ValueError as exc:
        msg = f"Invalid assistant command {config.assistant_command!r}: {exc}"
        raise ConfigurationError(msg) from exc


def _run_loop(config: AppConfig, client: AssistantClient, prompt: str) -> int:
    print("=== autoloop ===")
    print(f"Max runs: {config.max_runs}")
    print("")
    loop = RunLoop(
        client=client,
        log_dir=config.log_dir,
        max_runs=config.max_runs,
        reader_grace_seconds=config.reader_grace_seconds,
        stop_on_missing_signal=config.stop_on_missing_signal,
        emit=_echo,
    )
    try:
        outcome = loop.run(prompt)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    print("")
    print(_render_outcome(outcome))
    print("")
    print(f"Logs in {Path(config.log_dir)}/")
    return 1 if outcome.status == "stalled" else 0


def _run_audit(config: AppConfig, client: AssistantClient, prompt: str) -> int:
    auditor = GrantAuditor(
        client=client,
        store=GrantStore(config.settings_path),
        timeout=config.audit_timeout,
    )
    if config.apply_grants:
        audit = auditor.apply(prompt)
    else:
        audit = auditor.report(prompt)
    print(_render_audit(audit, config.settings_path))
    return 0


def _render_outcome(outcome: TerminationOutcome) -> str:
    if outcome.status == "completed":
        return f"All steps complete after {outcome.iterations} runs"
    if outcome.status == "stalled":
        record = outcome.last_record
        log_hint = f" Check log: {record.log_path}" if record else ""
        return (
            f"Run {outcome.iterations} finished without a DONE or CONTINUE signal; "
            f"stopping.{log_hint}"
        )
    return (
        f"Warning: reached max runs ({outcome.max_runs}) without completing. "
        "Re-run to continue."
    )


def _render_audit(audit: GrantAudit, settings_path: str) -> str:
    if audit.applied:
        lines = [f"Updated {settings_path}"]
        lines.extend(f"  + {grant}" for grant in audit.added)
        lines.extend(f"  - {grant}" for grant in audit.removed)
        if not audit.added and not audit.removed:
            lines.append("  (no changes)")
        return "\n".join(lines)

    if not audit.missing:
        return "No missing permissions found."
    lines = ["Missing permissions:"]
    lines.extend(f"  {grant}" for grant in audit.missing)
    lines.append("Re-run with --check --yes to add them.")
    return "\n".join(lines)


def _notify_update(config: AppConfig) -> None:
    latest = check_for_updates(config.update_url, __version__)
    if latest is None:
        return
    print(f"A new version of autoloop is available: {latest} (installed {__version__}).")
    print("Upgrade with: pip install --upgrade autoloop")


def _echo(text: str) -> None:
    print(text, flush=True)


if __name__ == "__main__":
    raise SystemExit(main())
