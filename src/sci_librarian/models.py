"""
Domain models shared by the store, the collaborators and the batch pipeline.

All models are immutable dataclasses. `FileRecord` is a read model of one
row of the record store; `Job` and `JobResult` only live for the duration of
a batch.
"""

from __future__ import annotations

import datetime as dt
import enum
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Union


class FileStatus(str, enum.Enum):
    PENDING = "PENDING"
    # Reserved; nothing moves a record into these states yet.
    DOWNLOADED = "DOWNLOADED"
    PROCESSED = "PROCESSED"
    ARCHIVED = "ARCHIVED"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class RemoteEntry:
    """One file listed in the remote store."""

    id: str
    name: str
    path: str
    content_hash: str


@dataclass(frozen=True)
class ArticleMetadata:
    title: str
    authors: list[str]
    summary: str
    abstract: str


@dataclass(frozen=True)
class FileRecord:
    remote_id: str
    name: str
    content_hash: str
    status: FileStatus
    updated_at: dt.datetime
    path: str | None = None
    title: str | None = None
    authors: list[str] = field(default_factory=list)
    summary: str | None = None
    target_paths: list[str] = field(default_factory=list)
    last_error: str | None = None


@dataclass(frozen=True)
class Job:
    record_id: str
    name: str
    path: str | None = None

    @classmethod
    def from_record(cls, record: FileRecord) -> "Job":
        return cls(record_id=record.remote_id, name=record.name, path=record.path)


@dataclass(frozen=True)
class JobSuccess:
    record_id: str
    name: str
    metadata: ArticleMetadata
    target_paths: list[str]

    ok = True


@dataclass(frozen=True)
class JobFailure:
    record_id: str
    name: str
    error: str

    ok = False


JobResult = Union[JobSuccess, JobFailure]


@dataclass(frozen=True)
class Rule:
    """A filing rule: papers matching ``description`` are copied to ``target``."""

    name: str
    description: str
    target: str


class RuleSet:
    """
    Immutable, ordered collection of rules.

    Shared by every worker of a batch without locking; nothing mutates it
    after construction.
    """

    def __init__(self, rules: Iterable[Rule]):
        self._rules = tuple(rules)
        self._by_name = {}
        for rule in self._rules:
            if rule.name in self._by_name:
                raise ValueError(f"Duplicate rule name: {rule.name!r}")
            self._by_name[rule.name] = rule

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"RuleSet({[rule.name for rule in self._rules]!r})"

    def get(self, name: str) -> Rule | None:
        return self._by_name.get(name)


def load_rules(path: str | Path) -> RuleSet:
    """
    Load a rule set from a JSON file.

    The file holds a list of objects with ``name``, ``description`` and
    ``target`` keys; a top-level ``{"rules": [...]}`` wrapper is accepted too.
    """
    with open(path, encoding="utf-8") as handle:
        data = json.load(handle)
    if isinstance(data, dict):
        data = data.get("rules")
    if not isinstance(data, list):
        raise ValueError(f"Rules file {path} must contain a list of rules")

    rules = []
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise ValueError(f"Rule #{index} is not an object")
        values = {}
        for key in ("name", "description", "target"):
            value = item.get(key)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"Rule #{index} has no valid {key!r}")
            values[key] = value.strip()
        rules.append(Rule(**values))
    return RuleSet(rules)
