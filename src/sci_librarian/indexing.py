"""
Folder index rendering.

Writes a ``README.md`` table of the papers filed into a target folder, built
from the metadata the batch collector stored for each processed record.
"""

from __future__ import annotations

import posixpath

import structlog

from .models import FileRecord
from .remote import RemoteFileStore
from .storage import RecordStore
from .utils import join_remote

log = structlog.get_logger(__name__)

INDEX_FILE_NAME = "README.md"


def _cell(value: str) -> str:
    """Escape a value for a Markdown table cell."""
    return " ".join(value.replace("|", "\\|").split())


def _path_in(record: FileRecord, folder: str) -> str | None:
    """Path of the record's copy directly inside ``folder``, if any."""
    prefix = folder.rstrip("/") + "/"
    for path in record.target_paths:
        if path.startswith(prefix) and "/" not in path[len(prefix) :]:
            return path
    return None


def _file_name_in(record: FileRecord, folder: str) -> str:
    path = _path_in(record, folder)
    return posixpath.basename(path) if path else record.name


def render_index(records: list[FileRecord], folder: str) -> str:
    lines = ["| Title | Authors | Summary |", "| :--- | :--- | :--- |"]
    for record in records:
        title = _cell(record.title or "Unknown")
        link = _file_name_in(record, folder).replace(" ", "%20")
        lines.append(
            f"| [{title}]({link}) | {_cell(', '.join(record.authors))} "
            f"| {_cell(record.summary or '')} |"
        )
    return "\n".join(lines) + "\n"


def generate_index(store: RecordStore, remote: RemoteFileStore, folder: str) -> str | None:
    """
    Render and upload ``<folder>/README.md``.

    Returns the uploaded path, or None when no paper is filed in ``folder``.
    """
    # The store matches substrings; keep papers filed directly in ``folder``.
    records = [
        record
        for record in store.find_by_target_prefix(folder)
        if _path_in(record, folder) is not None
    ]
    if not records:
        log.info("No papers filed in folder; index not written", folder=folder)
        return None

    index_path = join_remote(folder, INDEX_FILE_NAME)
    remote.upload(index_path, render_index(records, folder).encode("utf-8"))
    log.info("Wrote folder index", path=index_path, paper_count=len(records))
    return index_path
