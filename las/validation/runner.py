from __future__ import annotations

import io
import platform
import sys
import tempfile
import time
from pathlib import Path
from typing import Any, Iterable

from rich.console import Console
from rich.table import Table

from las import __version__, settings
from las.exceptions import FatalCheckError, MissingDependency
from las.utils.file_manager import FileManager
from las.utils.logger import local_timestamp, logger, timeit
from las.validation import checks  # noqa: F401  (registers the built-in suites)
from las.validation.context import ValidationContext
from las.validation.registry import Check, CheckOutcome, CheckRegistry, registry
from las.validation.results import RunReport, TestResult

ASSERTIONS_ENABLED = __debug__


def interpret_outcome(outcome: CheckOutcome) -> tuple[bool, str]:
    """``None`` passes, a bool is the verdict, ``(bool, message)`` carries a message."""
    if outcome is None:
        return True, ""
    if isinstance(outcome, tuple):
        passed, message = outcome
        return bool(passed), str(message)
    return bool(outcome), ""


class ValidationRunner:
    """
    Runs registered check suites and scores them.

    Each check is isolated: assertion failures, missing dependencies and
    unexpected exceptions mark only that check as failed. A `FatalCheckError`
    stops the run and fails it regardless of the score.

    Example:
        runner = ValidationRunner(threshold=90, reports_dir=Path("reports"))
        report = runner.run(["cache", "security"])
        sys.exit(0 if report.passed else 1)
    """

    def __init__(
        self,
        *,
        threshold: float | None = None,
        reports_dir: str | Path | None = None,
        required_tools: list[str] | None = None,
        write_html: bool = True,
        check_registry: CheckRegistry | None = None,
        console: Console | None = None,
    ) -> None:
        self.threshold = threshold if threshold is not None else settings.VALIDATION_THRESHOLD
        self.reports_dir = Path(reports_dir or settings.REPORTS_DIR)
        self.required_tools = required_tools
        self.write_html = write_html
        self.registry = check_registry or registry
        self.console = console or Console(stderr=True)

    def run(self, suites: Iterable[str] | None = None) -> RunReport:
        selected = list(suites) if suites else self.registry.suites()
        unknown = [s for s in selected if s not in self.registry.suites()]
        if unknown:
            raise ValueError(f"Unknown suite(s): {', '.join(unknown)}")

        report = RunReport(
            suite=selected[0] if len(selected) == 1 else "all",
            threshold=self.threshold,
            environment=self.environment(),
        )
        logger.info(f"Validation run '{report.suite}' started ({', '.join(selected)})")

        if ASSERTIONS_ENABLED:
            self._run_suites(selected, report)
        else:
            # Checks report failures through assert; under -O every one would pass.
            report.aborted = "assertions are disabled (python -O), checks cannot report failures"
            logger.critical(f"Validation aborted: {report.aborted}")

        report.finished_at = FileManager.get_timestamp()
        level = "SUCCESS" if report.passed else "ERROR"
        logger.log(
            level,
            f"Validation '{report.suite}': {report.passed_count}/{report.total} passed, "
            f"score {report.score:.1f}% (threshold {report.threshold:.1f}%)",
        )

        self.print_summary(report)
        self.write_reports(report)
        return report

    def _run_suites(self, selected: list[str], report: RunReport) -> None:
        with tempfile.TemporaryDirectory(prefix="las_validation_") as workdir:
            ctx = ValidationContext(Path(workdir), required_tools=self.required_tools)
            try:
                for suite in selected:
                    for check in self.registry.checks(suite):
                        report.results.append(self.run_check(check, ctx))
            except FatalCheckError as error:
                report.aborted = str(error)
                logger.critical(f"Validation aborted: {error}")

    def run_check(self, check: Check, ctx: ValidationContext) -> TestResult:
        start = time.perf_counter()
        try:
            passed, message = interpret_outcome(check.func(ctx))
        except AssertionError as error:
            passed, message = False, str(error) or "assertion failed"
        except MissingDependency as error:
            passed, message = False, f"Missing dependency: {error}"
        except FatalCheckError:
            raise
        except Exception as error:  # noqa: BLE001
            logger.opt(exception=error).error(f"Check '{check.suite}/{check.name}' crashed")
            passed, message = False, f"{type(error).__name__}: {error}"

        result = TestResult(
            category=check.category,
            name=check.name,
            passed=passed,
            message=message or (check.description if passed else "failed"),
            duration_ms=round((time.perf_counter() - start) * 1000, 3),
            details={"suite": check.suite},
        )
        logger.debug(f"[{result.status}] {check.suite}/{check.name} {result.message}")
        return result

    @staticmethod
    def environment() -> dict[str, Any]:
        return {
            "python": platform.python_version(),
            "platform": platform.platform(),
            "executable": sys.executable,
            "las_version": __version__,
            "plugin_version": settings.PLUGIN_VERSION,
            "local_time": local_timestamp(),
        }

    # ─── Output ───

    def build_table(self, report: RunReport) -> Table:
        table = Table(title=f"Validation: {report.suite}", show_lines=False)
        table.add_column("Category", style="cyan", no_wrap=True)
        table.add_column("Check")
        table.add_column("Status", justify="center")
        table.add_column("Message", overflow="fold")
        table.add_column("ms", justify="right")

        for result in report.results:
            status = "[green]PASS[/green]" if result.passed else "[red]FAIL[/red]"
            table.add_row(
                result.category, result.name, status, result.message, f"{result.duration_ms:.1f}"
            )

        verdict = "[green]PASSED[/green]" if report.passed else "[red]FAILED[/red]"
        table.caption = (
            f"{report.passed_count}/{report.total} passed · score {report.score:.1f}% · "
            f"threshold {report.threshold:.1f}% · {verdict}"
        )
        if report.aborted:
            table.caption += f" · aborted: {report.aborted}"
        return table

    def print_summary(self, report: RunReport) -> None:
        self.console.print(self.build_table(report))

    @timeit
    def write_reports(self, report: RunReport) -> dict[str, Path]:
        """Write ``<suite>-report.json`` (and ``.html``) under the reports dir."""
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        paths = {"json": self.reports_dir / f"{report.suite}-report.json"}
        FileManager.save(report.to_dict(), paths["json"], indent=True, atomic=True)

        if self.write_html:
            paths["html"] = self.reports_dir / f"{report.suite}-report.html"
            recorder = Console(record=True, file=io.StringIO(), width=140)
            recorder.print(self.build_table(report))
            recorder.save_html(str(paths["html"]))

        logger.info(f"Reports written: {', '.join(str(p) for p in paths.values())}")
        return paths
