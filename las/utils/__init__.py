from .logger import FORMAT, LOG_DIR, catch, local_timestamp, logger, silence_libs, timeit
from .cache import CacheManager, DiskTransientStore, RedisObjectCache
from .file_manager import FileManager

__all__ = [
    "FileManager",
    "CacheManager",
    "DiskTransientStore",
    "RedisObjectCache",
    "logger",
    "FORMAT",
    "LOG_DIR",
    "catch",
    "local_timestamp",
    "silence_libs",
    "timeit",
]
