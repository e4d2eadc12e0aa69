"""Git cache engine: data-level bookkeeping and the off-loop git worker."""

from relaysync.engines.git_cache.cache import DataLevel, RepoDataCache
from relaysync.engines.git_cache.engine import GitEngine, PushResult, SubprocessGitEngine
from relaysync.engines.git_cache.worker import GitProgress, GitRequest, GitWorker

__all__ = [
    "DataLevel",
    "GitEngine",
    "GitProgress",
    "GitRequest",
    "GitWorker",
    "PushResult",
    "RepoDataCache",
    "SubprocessGitEngine",
]
