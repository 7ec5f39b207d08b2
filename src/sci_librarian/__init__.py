"""
sci-librarian: files scientific papers from a Dropbox inbox.

This package contains:

- the record store tracking per-file progress (SQLite)
- the Dropbox client and the LLM classification provider
- the inbox synchronizer and the concurrent batch pipeline
- folder index rendering and the command-line entry point
"""

from .batch import BatchOutcome, BatchRunner, Collector, ProgressEvent, Scanner, WorkerPool
from .models import FileRecord, FileStatus, Job, JobFailure, JobSuccess, Rule, RuleSet
from .storage import RecordStore
from .sync import Synchronizer

__all__ = [
    "BatchOutcome",
    "BatchRunner",
    "Collector",
    "FileRecord",
    "FileStatus",
    "Job",
    "JobFailure",
    "JobSuccess",
    "ProgressEvent",
    "RecordStore",
    "Rule",
    "RuleSet",
    "Scanner",
    "Synchronizer",
    "WorkerPool",
]
