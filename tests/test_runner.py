"""
Tests for the validation runner (las/validation)

Tests cover:
- Check outcome interpretation
- Failure isolation (assertions, missing dependencies, crashes)
- Fatal aborts and scoring against the threshold
- JSON/HTML report output
- The built-in suites passing in a clean environment
"""

import io

import pytest
from rich.console import Console

from las.exceptions import FatalCheckError, MissingDependency
from las.utils.file_manager import FileManager
from las.validation import CheckRegistry, RunReport, TestResult, ValidationRunner, interpret_outcome
from las.validation.context import ValidationContext
from las.validation.registry import registry


@pytest.fixture
def quiet_console():
    return Console(file=io.StringIO(), width=120)


@pytest.fixture
def make_runner(tmp_path, quiet_console):
    """Factory for runners writing reports under tmp_path."""

    def factory(check_registry, **kwargs):
        kwargs.setdefault("threshold", 90)
        kwargs.setdefault("reports_dir", tmp_path / "reports")
        kwargs.setdefault("required_tools", [])
        return ValidationRunner(check_registry=check_registry, console=quiet_console, **kwargs)

    return factory


def _registry_with(**checks):
    """Build a single-suite registry from name → function."""
    reg = CheckRegistry()
    for name, func in checks.items():
        reg.check("demo", "Demo", name)(func)
    return reg


# ═══════════════════════════════════════════════════════════════════
# Outcomes & results
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.unit
class TestOutcomes:
    """Test interpret_outcome() and the result containers."""

    @pytest.mark.parametrize(
        "outcome, expected",
        [
            (None, (True, "")),
            (True, (True, "")),
            (False, (False, "")),
            ((True, "3.12.1"), (True, "3.12.1")),
            ((False, "too slow"), (False, "too slow")),
        ],
    )
    def test_interpret_outcome(self, outcome, expected):
        assert interpret_outcome(outcome) == expected

    def test_score_and_verdict(self):
        report = RunReport(suite="demo", threshold=90)
        report.results = [TestResult("A", f"c{i}", passed=i != 0) for i in range(10)]

        assert report.total == 10
        assert report.passed_count == 9
        assert report.failed_count == 1
        assert report.score == pytest.approx(90.0)
        assert report.passed is True

    def test_below_threshold_fails(self):
        report = RunReport(suite="demo", threshold=90)
        report.results = [TestResult("A", "a", True), TestResult("A", "b", False)]
        assert report.passed is False

    def test_empty_run_scores_zero(self):
        assert RunReport(suite="demo", threshold=90).score == 0.0

    def test_aborted_never_passes(self):
        report = RunReport(suite="demo", threshold=0, aborted="php missing")
        report.results = [TestResult("A", "a", True)]
        assert report.passed is False

    def test_by_category(self):
        report = RunReport(suite="demo", threshold=90)
        report.results = [TestResult("A", "a", True), TestResult("B", "b", True), TestResult("A", "c", False)]
        assert [r.name for r in report.by_category()["A"]] == ["a", "c"]

    def test_result_status(self):
        assert TestResult("A", "a", True).status == "PASS"
        assert TestResult("A", "a", False).to_dict()["passed"] is False


@pytest.mark.unit
class TestRegistry:
    """Test check registration."""

    def test_duplicate_names_rejected(self):
        reg = _registry_with(first=lambda ctx: None)
        with pytest.raises(ValueError, match="Duplicate"):
            reg.check("demo", "Demo", "first")(lambda ctx: None)

    def test_unknown_suite(self):
        with pytest.raises(KeyError):
            CheckRegistry().checks("nope")

    def test_name_and_description_from_function(self):
        reg = CheckRegistry()

        @reg.check("demo", "Demo")
        def cache_round_trip(ctx):
            """Stored values come back.

            More detail here.
            """

        check = reg.checks("demo")[0]
        assert check.name == "cache round trip"
        assert check.description == "Stored values come back."

    def test_builtin_suites_registered_in_order(self):
        assert registry.suites() == ["environment", "cache", "security", "settings", "ajax"]


# ═══════════════════════════════════════════════════════════════════
# Runner
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.unit
class TestRunner:
    """Test isolation, aborts and report output."""

    def test_failures_are_isolated(self, make_runner):
        def failing_assert(ctx):
            raise AssertionError("numbers differ")

        def missing_dep(ctx):
            raise MissingDependency("redis server")

        def crashing(ctx):
            raise KeyError("boom")

        reg = _registry_with(
            ok=lambda ctx: None,
            failing_assert=failing_assert,
            missing_dep=missing_dep,
            crashing=crashing,
            returns_false=lambda ctx: False,
            after=lambda ctx: (True, "still runs"),
        )
        report = make_runner(reg).run()

        messages = {r.name: (r.passed, r.message) for r in report.results}
        assert messages["ok"][0] is True
        assert messages["failing_assert"] == (False, "numbers differ")
        assert messages["missing_dep"] == (False, "Missing dependency: redis server")
        assert messages["crashing"][0] is False
        assert messages["crashing"][1].startswith("KeyError")
        assert messages["returns_false"] == (False, "failed")
        assert messages["after"] == (True, "still runs")
        assert report.total == 6
        assert report.passed is False

    def test_fatal_error_aborts_run(self, make_runner):
        def fatal(ctx):
            raise FatalCheckError("required tool 'php' is not installed")

        reg = _registry_with(first=lambda ctx: None, fatal=fatal, never=lambda ctx: None)
        report = make_runner(reg, threshold=0).run()

        assert report.aborted == "required tool 'php' is not installed"
        assert [r.name for r in report.results] == ["first"]
        assert report.passed is False

    def test_disabled_assertions_abort_run(self, make_runner, monkeypatch):
        from las.validation import runner as runner_module

        monkeypatch.setattr(runner_module, "ASSERTIONS_ENABLED", False)
        report = make_runner(_registry_with(ok=lambda ctx: None), threshold=0).run()

        assert report.results == []
        assert "assertions are disabled" in report.aborted
        assert report.passed is False

    def test_threshold_applied(self, make_runner):
        reg = _registry_with(a=lambda ctx: None, b=lambda ctx: False)
        assert make_runner(reg, threshold=50).run().passed is True
        assert make_runner(reg, threshold=51).run().passed is False

    def test_unknown_suite_rejected(self, make_runner):
        with pytest.raises(ValueError, match="Unknown suite"):
            make_runner(_registry_with(a=lambda ctx: None)).run(["nope"])

    def test_checks_get_a_sandbox(self, make_runner):
        seen = []

        def uses_context(ctx):
            assert isinstance(ctx, ValidationContext)
            assert ctx.workdir.exists()
            seen.append(ctx.required_tools)

        make_runner(_registry_with(uses_context=uses_context), required_tools=["php"]).run()
        assert seen == [["php"]]

    def test_reports_written(self, make_runner, tmp_path):
        reg = _registry_with(a=lambda ctx: None, b=lambda ctx: (False, "broken"))
        report = make_runner(reg).run(["demo"])

        json_path = tmp_path / "reports" / "demo-report.json"
        html_path = tmp_path / "reports" / "demo-report.html"
        document = FileManager.read(json_path)

        assert document["suite"] == "demo"
        assert document["score"] == 50.0
        assert document["passed"] is False
        assert document["total"] == 2
        assert document["results"][1]["message"] == "broken"
        assert "environment" in document
        assert report.finished_at is not None
        assert "broken" in html_path.read_text(encoding="utf-8")

    def test_multi_suite_report_named_all(self, make_runner, tmp_path):
        reg = _registry_with(a=lambda ctx: None)
        reg.check("other", "Other", "b")(lambda ctx: None)

        report = make_runner(reg, write_html=False).run()

        assert report.suite == "all"
        assert (tmp_path / "reports" / "all-report.json").exists()
        assert not (tmp_path / "reports" / "all-report.html").exists()


@pytest.mark.integration
class TestBuiltinSuites:
    """Run the shipped suites end to end."""

    @pytest.mark.parametrize("suite", ["cache", "security", "settings", "ajax"])
    def test_suite_passes(self, suite, tmp_path, quiet_console):
        runner = ValidationRunner(
            threshold=100, reports_dir=tmp_path, required_tools=[], console=quiet_console
        )
        report = runner.run([suite])

        failures = [(r.name, r.message) for r in report.results if not r.passed]
        assert failures == []
        assert report.passed is True


@pytest.mark.unit
class TestEnvironmentChecks:
    """Test tool discovery without depending on the host's tooling."""

    @pytest.fixture
    def environment(self, monkeypatch):
        from las.validation.checks import environment

        monkeypatch.setattr(environment, "locate", lambda tool: None)
        return environment

    def test_missing_optional_tool_passes(self, environment, tmp_path):
        ctx = ValidationContext(tmp_path, required_tools=[])
        assert environment.php_available(ctx) == (True, "php not found (optional)")

    def test_missing_required_tool_is_fatal(self, environment, tmp_path):
        ctx = ValidationContext(tmp_path, required_tools=["php"])
        with pytest.raises(FatalCheckError, match="php"):
            environment.php_available(ctx)

    def test_missing_required_browser_is_fatal(self, environment, tmp_path):
        ctx = ValidationContext(tmp_path, required_tools=["firefox"])
        with pytest.raises(FatalCheckError, match="firefox"):
            environment.browser_available(ctx)

    def test_tool_version_of_broken_binary(self, tmp_path):
        from las.validation.checks.environment import tool_version

        assert tool_version(str(tmp_path / "no-such-binary")) == "version unknown"

    def test_redis_check_skipped_when_disabled(self, tmp_path, monkeypatch):
        from las import settings
        from las.validation.checks.environment import object_cache_reachable

        monkeypatch.setattr(settings, "USE_REDIS", False)
        passed, message = object_cache_reachable(ValidationContext(tmp_path))
        assert passed is True
        assert "disabled" in message

    def test_unreachable_redis_is_missing_dependency(self, tmp_path, monkeypatch):
        from las import settings
        from las.utils.cache import RedisObjectCache
        from las.validation.checks.environment import object_cache_reachable

        monkeypatch.setattr(settings, "USE_REDIS", True)
        monkeypatch.setattr(RedisObjectCache, "ping", lambda self: False)
        with pytest.raises(MissingDependency, match="Redis not reachable"):
            object_cache_reachable(ValidationContext(tmp_path))
