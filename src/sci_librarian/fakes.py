"""
In-memory collaborators.

Deterministic stand-ins for Dropbox and the classification service, used by
the test-suite. They are safe to call from many worker threads at once.
"""

from __future__ import annotations

import threading
import time

from .classifier import Classification, Classifier
from .extract import TextExtractor
from .models import ArticleMetadata, RemoteEntry, RuleSet
from .remote import DropboxError, RemoteFileStore

DEFAULT_METADATA = ArticleMetadata(
    title="Unknown Paper",
    authors=["Unknown Author"],
    summary="A paper about something.",
    abstract="This is a default abstract.",
)


class InMemoryFileStore(RemoteFileStore):
    """
    Remote file store backed by a dict of ``id or path -> bytes``.

    ``fail_uploads`` maps a path to the exception its upload raises.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.files: dict[str, bytes] = {}
        self.entries: list[RemoteEntry] = []
        self.uploads: list[str] = []
        self.fail_uploads: dict[str, Exception] = {}

    def add_entry(self, entry: RemoteEntry, content: bytes) -> None:
        with self._lock:
            self.entries = [e for e in self.entries if e.id != entry.id] + [entry]
            self.files[entry.id] = content

    def list_folder(self, path: str) -> list[RemoteEntry]:
        with self._lock:
            return list(self.entries)

    def download(self, remote_id: str) -> bytes:
        with self._lock:
            try:
                return self.files[remote_id]
            except KeyError:
                raise DropboxError(f"File not found: {remote_id}", status_code=409) from None

    def upload(self, path: str, content: bytes) -> None:
        with self._lock:
            error = self.fail_uploads.get(path)
            if error is not None:
                raise error
            self.files[path] = bytes(content)
            self.uploads.append(path)


class FakeClassifier(Classifier):
    """
    Classifier returning canned answers.

    ``set_response(snippet, metadata, rule_names)`` answers every text
    containing ``snippet``; other texts get the default answer with no match.
    ``delay`` keeps each call in flight for a while, and ``max_in_flight``
    records the highest number of simultaneous calls seen.
    """

    def __init__(self, delay: float = 0.0):
        self._lock = threading.Lock()
        self.responses: dict[str, tuple[ArticleMetadata, list[str]]] = {}
        self.errors: dict[str, Exception] = {}
        self.delay = delay
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    def set_response(
        self, snippet: str, metadata: ArticleMetadata, rule_names: list[str]
    ) -> None:
        with self._lock:
            self.responses[snippet] = (metadata, list(rule_names))

    def set_error(self, snippet: str, error: Exception) -> None:
        with self._lock:
            self.errors[snippet] = error

    def classify(self, text: str, rules: RuleSet) -> Classification:
        with self._lock:
            self.calls += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            return self._answer(text, rules)
        finally:
            with self._lock:
                self.in_flight -= 1

    def _answer(self, text: str, rules: RuleSet) -> Classification:
        with self._lock:
            errors = dict(self.errors)
            responses = dict(self.responses)
        for snippet, error in errors.items():
            if snippet in text:
                raise error
        for snippet, (metadata, rule_names) in responses.items():
            if snippet in text:
                matched = [rule for rule in rules if rule.name in rule_names]
                return Classification(metadata=metadata, rules=matched)
        return Classification(metadata=DEFAULT_METADATA, rules=[])


class StaticTextExtractor(TextExtractor):
    """Extractor that treats the downloaded bytes as UTF-8 text."""

    def __init__(self, max_chars: int | None = None):
        self.max_chars = max_chars

    def extract(self, content: bytes) -> str:
        text = content.decode("utf-8", errors="replace")
        return text[: self.max_chars] if self.max_chars else text
