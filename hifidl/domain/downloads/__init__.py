"""Download domain orchestration and supporting services."""

from .repository import JobStore, SqlAlchemyJobStore
from .fetcher import TrackFetcher
from .tagging import TagEmbedder
from .pipeline import JobRun, TrackPipeline
from .scheduler import BatchScheduler
from .file_manager import ArchiveAssembler, FileManager
from .persistence import ArtifactPersister, QuotaPolicy
from .jobs import JobController, JobDispatcher

__all__ = [
    "JobStore",
    "SqlAlchemyJobStore",
    "TrackFetcher",
    "TagEmbedder",
    "JobRun",
    "TrackPipeline",
    "BatchScheduler",
    "ArchiveAssembler",
    "FileManager",
    "ArtifactPersister",
    "QuotaPolicy",
    "JobController",
    "JobDispatcher",
]
