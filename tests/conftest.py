"""
Pytest configuration and shared fixtures.

This conftest.py provides:
- Environment configuration fixtures
- A manual clock and cache/storage/security factories bound to it
- Common test utilities and mocks (Redis)
"""

import fnmatch
import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

# Plain stderr sink under pytest
os.environ.setdefault("DISABLE_RICH", "1")

# Load test environment variables
TEST_ENV = Path(__file__).parent / ".env.test"
if TEST_ENV.exists():
    load_dotenv(TEST_ENV)
else:
    load_dotenv()  # Fallback to root .env

from las.api.ajax import NONCE_ACTION, AjaxDispatcher  # noqa: E402
from las.services.options import OptionsStore  # noqa: E402
from las.services.security import SecurityValidator, User  # noqa: E402
from las.services.settings_storage import SettingsStorage  # noqa: E402
from las.utils.cache import CacheManager  # noqa: E402
from las.validation.context import ManualClock  # noqa: E402


# ─── Pytest Configuration ────────────────────────────────────────────


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (file system, external services)")
    config.addinivalue_line("markers", "slow: Slow tests (>1s execution time)")


# ─── Environment Fixtures ────────────────────────────────────────────


@pytest.fixture(scope="session")
def test_root_dir() -> Path:
    """Return the root directory of the test suite."""
    return Path(__file__).parent


@pytest.fixture(scope="session")
def project_root_dir() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).parents[1]


@pytest.fixture
def temp_env_vars(monkeypatch):
    """Provide temporary environment variables for testing.

    Usage:
        def test_something(temp_env_vars):
            temp_env_vars["CACHE_TTL_DEFAULT"] = "60"
            # CACHE_TTL_DEFAULT is now "60" for this test only
    """
    class TempEnv:
        def __init__(self):
            self._env_vars: dict[str, str] = {}

        def __setitem__(self, key: str, value: str):
            self._env_vars[key] = value
            monkeypatch.setenv(key, value)

        def __getitem__(self, key: str) -> str:
            return self._env_vars[key]

    return TempEnv()


# ─── Clock & Service Fixtures ────────────────────────────────────────


@pytest.fixture
def clock() -> ManualClock:
    """Manual clock; call `clock.advance(seconds)` to simulate time passing."""
    return ManualClock()


@pytest.fixture
def make_cache(clock):
    """Factory for isolated cache managers on the shared manual clock."""

    def factory(**overrides) -> CacheManager:
        overrides.setdefault("default_ttl", 3600)
        overrides.setdefault("max_key_length", 250)
        overrides.setdefault("memory_limit", 10 * 1024 * 1024)
        overrides.setdefault("prefix", "las_fresh_")
        overrides.setdefault("enable_memory", True)
        overrides.setdefault("layers", [])
        return CacheManager(clock=clock, **overrides)

    return factory


@pytest.fixture
def cache(make_cache) -> CacheManager:
    return make_cache()


@pytest.fixture
def options(tmp_path) -> OptionsStore:
    return OptionsStore(tmp_path / "options.json")


@pytest.fixture
def storage(options, cache) -> SettingsStorage:
    return SettingsStorage(options, cache)


@pytest.fixture
def security(cache, clock) -> SecurityValidator:
    return SecurityValidator(cache, secret="test-secret", nonce_lifetime=86400, clock=clock)


@pytest.fixture
def dispatcher(storage, security, cache) -> AjaxDispatcher:
    return AjaxDispatcher(storage, security, cache)


@pytest.fixture
def admin() -> User:
    return User.administrator()


@pytest.fixture
def subscriber() -> User:
    return User(id=2, login="subscriber", roles=("subscriber",))


@pytest.fixture
def admin_nonce(security, admin) -> str:
    return security.create_nonce(NONCE_ACTION, admin)


# ─── Mock Fixtures ───────────────────────────────────────────────────


@pytest.fixture
def mock_redis(monkeypatch):
    """Mock Redis client for testing without real Redis instance."""

    class MockRedis:
        def __init__(self, *args, **kwargs):
            self._data = {}
            self.expirations = {}
            self.fail = False

        @classmethod
        def from_url(cls, url, **kwargs):
            return cls()

        def _check(self):
            if self.fail:
                import redis

                raise redis.ConnectionError("mock redis is down")

        def ping(self):
            self._check()
            return True

        def get(self, key):
            self._check()
            return self._data.get(key)

        def set(self, key, value, ex=None):
            self._check()
            self._data[key] = value
            self.expirations[key] = ex
            return True

        def delete(self, *keys):
            self._check()
            for key in keys:
                self._data.pop(key, None)
            return len(keys)

        def exists(self, *keys):
            return sum(1 for k in keys if k in self._data)

        def scan_iter(self, match="*"):
            self._check()
            return iter([k for k in list(self._data) if fnmatch.fnmatchcase(k, match)])

        def flushdb(self):
            self._data.clear()
            return True

    import redis
    monkeypatch.setattr(redis, "Redis", MockRedis)
    return MockRedis()


# ─── Performance Fixtures ────────────────────────────────────────────


@pytest.fixture
def benchmark_timer():
    """Simple benchmark timer for performance testing.

    Usage:
        def test_performance(benchmark_timer):
            with benchmark_timer("operation_name") as timer:
                # code to benchmark
                pass
            assert timer.elapsed < 1.0  # Should take less than 1 second
    """
    import time
    from contextlib import contextmanager

    class Timer:
        def __init__(self, name: str):
            self.name = name
            self.elapsed: float = 0.0

    @contextmanager
    def timer(name: str = "operation"):
        start = time.perf_counter()
        result = Timer(name)
        try:
            yield result
        finally:
            result.elapsed = time.perf_counter() - start
            print(f"\n⏱️  {name}: {result.elapsed:.4f}s")

    return timer
