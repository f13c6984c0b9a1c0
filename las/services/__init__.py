from .options import OptionsStore
from .security import SecurityValidator, User
from .settings_storage import SettingsStorage

__all__ = [
    "OptionsStore",
    "SecurityValidator",
    "SettingsStorage",
    "User",
]
