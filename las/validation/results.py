from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from las.utils.file_manager import FileManager


@dataclass
class TestResult:
    """One check outcome, appended to a run as it happens."""

    __test__ = False  # keep pytest from collecting this class

    category: str
    name: str
    passed: bool
    message: str = ""
    timestamp: str = field(default_factory=FileManager.get_timestamp)
    duration_ms: float = 0.0
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> str:
        return "PASS" if self.passed else "FAIL"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RunReport:
    """
    Results of a validation run plus its verdict.

    Attributes:
        suite: Suite name, or ``all`` for a combined run
        results: Results in the order they were recorded
        threshold: Minimum score (percent) for the run to pass
        started_at: ISO timestamp of the first check
        finished_at: ISO timestamp after the last check
        environment: Facts about the machine the run happened on
        aborted: Reason the run stopped early, if it did
    """

    suite: str
    threshold: float
    results: list[TestResult] = field(default_factory=list)
    started_at: str = field(default_factory=FileManager.get_timestamp)
    finished_at: str | None = None
    environment: dict[str, Any] = field(default_factory=dict)
    aborted: str | None = None

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed_count(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed_count(self) -> int:
        return self.total - self.passed_count

    @property
    def score(self) -> float:
        if not self.results:
            return 0.0
        return self.passed_count / self.total * 100

    @property
    def passed(self) -> bool:
        return self.aborted is None and self.score >= self.threshold

    def by_category(self) -> dict[str, list[TestResult]]:
        grouped: dict[str, list[TestResult]] = {}
        for result in self.results:
            grouped.setdefault(result.category, []).append(result)
        return grouped

    def to_dict(self) -> dict[str, Any]:
        return {
            "suite": self.suite,
            "score": round(self.score, 2),
            "threshold": self.threshold,
            "passed": self.passed,
            "total": self.total,
            "passed_count": self.passed_count,
            "failed_count": self.failed_count,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "aborted": self.aborted,
            "environment": self.environment,
            "results": [r.to_dict() for r in self.results],
        }
