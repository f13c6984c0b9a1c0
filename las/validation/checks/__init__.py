# Import order is suite order; environment runs first.
from . import environment, cache, security, settings, ajax  # noqa: F401
