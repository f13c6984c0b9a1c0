from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Union

if TYPE_CHECKING:
    from las.validation.context import ValidationContext

CheckOutcome = Union[bool, tuple[bool, str], None]
CheckFunc = Callable[["ValidationContext"], CheckOutcome]


@dataclass(frozen=True)
class Check:
    suite: str
    category: str
    name: str
    func: CheckFunc
    description: str = ""


class CheckRegistry:
    """Named suites of checks, in registration order."""

    def __init__(self) -> None:
        self._suites: dict[str, list[Check]] = {}

    def check(
        self, suite: str, category: str, name: str | None = None
    ) -> Callable[[CheckFunc], CheckFunc]:
        """
        Register a check function.

        Example:
            @registry.check("cache", "TTL", "value expires after its ttl")
            def expiry(ctx): ...
        """

        def decorator(func: CheckFunc) -> CheckFunc:
            doc = (func.__doc__ or "").strip().splitlines()
            self.add(
                Check(
                    suite=suite,
                    category=category,
                    name=name or func.__name__.replace("_", " "),
                    func=func,
                    description=doc[0] if doc else "",
                )
            )
            return func

        return decorator

    def add(self, check: Check) -> None:
        checks = self._suites.setdefault(check.suite, [])
        if any(existing.name == check.name for existing in checks):
            raise ValueError(f"Duplicate check '{check.name}' in suite '{check.suite}'")
        checks.append(check)

    def suites(self) -> list[str]:
        return list(self._suites)

    def checks(self, suite: str) -> list[Check]:
        if suite not in self._suites:
            raise KeyError(f"Unknown suite: {suite}")
        return list(self._suites[suite])


registry = CheckRegistry()
