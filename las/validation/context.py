from __future__ import annotations

from pathlib import Path

from las import settings
from las.api.ajax import NONCE_ACTION, AjaxDispatcher
from las.services.options import OptionsStore
from las.services.security import SecurityValidator, User
from las.services.settings_storage import SettingsStorage
from las.utils.cache import CacheManager

FAKE_EPOCH = 1_700_000_000.0


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = FAKE_EPOCH) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class ValidationContext:
    """
    Sandbox handed to every check.

    Factories build fresh, isolated services on a shared manual clock and a
    scratch directory, so checks never touch the real options file or cache.
    """

    def __init__(
        self,
        workdir: Path,
        *,
        required_tools: list[str] | None = None,
        optional_tools: list[str] | None = None,
    ) -> None:
        self.workdir = Path(workdir)
        self.workdir.mkdir(parents=True, exist_ok=True)
        self.clock = ManualClock()
        self.required_tools = list(
            required_tools if required_tools is not None else settings.REQUIRED_TOOLS
        )
        self.optional_tools = list(
            optional_tools if optional_tools is not None else settings.OPTIONAL_TOOLS
        )
        self.admin = User.administrator()
        self.subscriber = User(id=2, login="subscriber", roles=("subscriber",))
        self._counter = 0

    def _scratch(self, stem: str) -> Path:
        self._counter += 1
        return self.workdir / f"{stem}_{self._counter}"

    def cache(self, **overrides) -> CacheManager:
        overrides.setdefault("default_ttl", 3600)
        overrides.setdefault("max_key_length", 250)
        overrides.setdefault("memory_limit", 10 * 1024 * 1024)
        overrides.setdefault("prefix", "las_fresh_")
        overrides.setdefault("enable_memory", True)
        overrides.setdefault("layers", [])
        return CacheManager(clock=self.clock, **overrides)

    def options(self) -> OptionsStore:
        return OptionsStore(self._scratch("options").with_suffix(".json"))

    def storage(self, cache: CacheManager | None = None) -> SettingsStorage:
        return SettingsStorage(self.options(), cache or self.cache())

    def security(self, cache: CacheManager | None = None) -> SecurityValidator:
        return SecurityValidator(cache or self.cache(), secret="validation-secret", nonce_lifetime=86400)

    def dispatcher(self) -> AjaxDispatcher:
        cache = self.cache()
        return AjaxDispatcher(self.storage(cache), self.security(cache), cache)

    def admin_nonce(self, dispatcher: AjaxDispatcher) -> str:
        return dispatcher.security.create_nonce(NONCE_ACTION, self.admin)
