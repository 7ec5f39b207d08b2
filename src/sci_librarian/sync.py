"""
Inbox Synchronization
=====================

Reconciles the files listed in the remote inbox with the record store.

New files are registered as PENDING. Files whose content hash is unchanged
keep their status, so re-running a sync never disturbs papers that were
already processed or failed. Files whose hash changed are reset to PENDING
whatever their status was; this is the only way a record leaves ERROR.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import structlog

from .models import RemoteEntry
from .remote import RemoteFileStore
from .storage import RecordStore, UpsertOutcome

log = structlog.get_logger(__name__)


@dataclass
class SyncReport:
    listed: int = 0
    inserted: int = 0
    unchanged: int = 0
    reset: int = 0


class Synchronizer:
    def __init__(self, store: RecordStore, remote: RemoteFileStore):
        self.store = store
        self.remote = remote

    def sync(self, inbox: str) -> SyncReport:
        """List ``inbox`` and reconcile every file in it."""
        log.info("Syncing inbox", inbox=inbox)
        entries = self.remote.list_folder(inbox)
        report = self.sync_entries(entries)
        log.info(
            "Sync complete",
            inbox=inbox,
            listed=report.listed,
            inserted=report.inserted,
            unchanged=report.unchanged,
            reset=report.reset,
        )
        return report

    def sync_entries(self, entries: Iterable[RemoteEntry]) -> SyncReport:
        report = SyncReport()
        for entry in entries:
            outcome = self.store.upsert(
                entry.id, entry.name, entry.content_hash, path=entry.path
            )
            report.listed += 1
            if outcome is UpsertOutcome.INSERTED:
                report.inserted += 1
                log.debug("Registered new file", remote_id=entry.id, name=entry.name)
            elif outcome is UpsertOutcome.RESET:
                report.reset += 1
                log.info(
                    "Content changed; queued for reprocessing",
                    remote_id=entry.id,
                    name=entry.name,
                )
            else:
                report.unchanged += 1
        return report
