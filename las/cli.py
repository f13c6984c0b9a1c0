import argparse
import sys
from pathlib import Path

import msgspec
import psutil
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from las import __version__, settings
from las.api.ajax import NONCE_ACTION, AjaxDispatcher
from las.api.models import AjaxRequest
from las.services.options import OptionsStore
from las.services.security import SecurityValidator, User
from las.services.settings_storage import SettingsStorage
from las.utils.cache import CacheManager
from las.utils.file_manager import FileManager
from las.utils.logger import logger, silence_libs
from las.validation.registry import registry
from las.validation.runner import ValidationRunner

console = Console()


def _run_validate(args: argparse.Namespace) -> int:
    """
    Run the selected suites and turn the verdict into an exit code.

    Returns:
        0 when the score reaches the threshold, 1 otherwise or when the run
        was aborted by missing mandatory tooling.
    """
    runner = ValidationRunner(
        threshold=args.threshold,
        reports_dir=args.reports_dir,
        required_tools=sorted(set(settings.REQUIRED_TOOLS) | set(args.require or [])),
        write_html=not args.no_html,
    )
    try:
        report = runner.run(args.suite)
    except ValueError as e:
        logger.error(str(e))
        return 1

    if report.aborted:
        logger.error(f"Run aborted: {report.aborted}")
        return 1
    return 0 if report.passed else 1


def _list_checks(args: argparse.Namespace) -> int:
    table = Table(title="Registered checks")
    table.add_column("Suite", style="cyan")
    table.add_column("Category")
    table.add_column("Check")
    for suite in registry.suites():
        for check in registry.checks(suite):
            table.add_row(suite, check.category, check.name)
    console.print(table)
    return 0


def _health(args: argparse.Namespace) -> int:
    cache = CacheManager.from_settings()
    status = cache.health()

    table = Table(title=f"LAS v{__version__} health")
    table.add_column("Component", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Details")
    for name, info in status.items():
        details = ", ".join(f"{k}={v}" for k, v in info.items() if k not in ("ok", "enabled"))
        table.add_row(name, "[green]OK[/green]" if info["ok"] else "[red]DOWN[/red]", details)

    rss = psutil.Process().memory_info().rss
    table.add_row("process", "[green]OK[/green]", f"rss={rss / 1024 / 1024:.1f} MB")
    options_file = settings.OPTIONS_FILE
    table.add_row("options", "[green]OK[/green]", str(options_file) if options_file else "in-memory")
    console.print(table)

    healthy = all(info["ok"] for info in status.values())
    if not healthy:
        logger.warning("One or more cache layers are unreachable")
    return 0 if healthy else 1


def _dispatch_ajax(args: argparse.Namespace) -> int:
    try:
        request = AjaxRequest(
            action=args.action,
            data=FileManager.json_loads(args.data) if args.data else {},
        )
    except msgspec.DecodeError as e:
        logger.error(f"--data is not valid JSON: {e}")
        return 1
    except ValidationError as e:
        logger.error(f"--data must be a JSON object: {e.errors()[0]['msg']}")
        return 1

    cache = CacheManager.from_settings()
    dispatcher = AjaxDispatcher(
        SettingsStorage(OptionsStore(settings.OPTIONS_FILE), cache),
        SecurityValidator(cache),
        cache,
    )
    user = User.administrator()
    nonce = dispatcher.security.create_nonce(NONCE_ACTION, user)
    reply = dispatcher.dispatch(request.action, request.data, nonce=nonce, user=user)
    console.print_json(FileManager.json_dumps(reply))
    return 0 if reply["success"] else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="las",
        description=f"LAS - Live Admin Styler validation toolkit v{__version__}",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"LAS v{__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")
    subparsers.required = True

    # --- validate ---
    parser_validate = subparsers.add_parser("validate", help="Run validation suites and score them.")
    parser_validate.add_argument(
        "--suite",
        action="append",
        choices=registry.suites(),
        help="Suite to run (repeatable). Default: all suites.",
    )
    parser_validate.add_argument(
        "--threshold",
        type=float,
        default=None,
        help=f"Minimum score in percent (default: {settings.VALIDATION_THRESHOLD:g}).",
    )
    parser_validate.add_argument(
        "--reports-dir",
        type=Path,
        default=None,
        help=f"Where reports are written (default: {settings.REPORTS_DIR}).",
    )
    parser_validate.add_argument(
        "--require",
        action="append",
        metavar="TOOL",
        help="Tool that must be installed; missing means the run is aborted (repeatable).",
    )
    parser_validate.add_argument("--no-html", action="store_true", help="Skip the HTML report.")
    parser_validate.set_defaults(func=_run_validate)

    # --- checks ---
    parser_checks = subparsers.add_parser("checks", help="List suites and their checks.")
    parser_checks.set_defaults(func=_list_checks)

    # --- health ---
    parser_health = subparsers.add_parser("health", help="Show cache layer and process status.")
    parser_health.set_defaults(func=_health)

    # --- ajax ---
    parser_ajax = subparsers.add_parser("ajax", help="Dispatch one AJAX action as an administrator.")
    parser_ajax.add_argument("action", help="Action name, e.g. las_load_settings.")
    parser_ajax.add_argument("--data", default=None, help="Request data as a JSON object.")
    parser_ajax.set_defaults(func=_dispatch_ajax)

    return parser


def main(argv: list[str] | None = None) -> int:
    """
    Entry point for the LAS CLI.

    Subcommands:
        validate:  Runs suites, writes <suite>-report.json/.html, exits 0/1.
            - --suite: Suite to run (repeatable).
            - --threshold: Pass threshold in percent.
            - --reports-dir: Output directory for reports.
            - --require: Mandatory tool (repeatable).
            - --no-html: Only write the JSON report.
        checks:    Lists registered checks.
        health:    Prints cache layer status.
        ajax:      Dispatches one action and prints the envelope.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    silence_libs("redis", "filelock", level="WARNING")
    logger.debug(f"Command '{args.command}' selected")
    try:
        return args.func(args)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user.")
        return 130


def entrypoint() -> None:
    sys.exit(main())


if __name__ == "__main__":
    entrypoint()
