"""
Paper Processing Worker
=======================

This module defines the `JobProcessor` class, which runs the end-to-end
processing of a single paper inside a batch worker: download the file, keep
a local working copy, extract text from the leading pages, classify the paper
against the filing rules, and publish the paper plus a Markdown sidecar to
every matched target folder.

Each step is a hard gate. The first failing step ends the job with a
`JobFailure` naming the step and its cause; nothing later is attempted.
Failures are returned, never raised, so a bad paper cannot take down its
worker or the batch.
"""

from __future__ import annotations

import datetime as dt
from pathlib import Path

import structlog

from .classifier import Classifier
from .extract import TextExtractor
from .models import ArticleMetadata, Job, JobFailure, JobResult, JobSuccess, RuleSet
from .remote import RemoteFileStore
from .utils import join_remote, sanitize_id

log = structlog.get_logger(__name__)

SIDECAR_SUFFIX = ".md"


class StepFailed(Exception):
    """Internal signal carrying the human readable cause of a failed step."""


def render_sidecar(metadata: ArticleMetadata) -> str:
    """Render the Markdown summary stored next to a filed paper."""
    return (
        f"# {metadata.title}\n\n"
        f"Authors: {', '.join(metadata.authors)}\n\n"
        f"Summary: {metadata.summary}\n\n"
        f"Abstract: {metadata.abstract}\n"
    )


def local_copy_path(work_dir: Path, record_id: str) -> Path:
    return work_dir / "raw" / f"{sanitize_id(record_id)}.pdf"


class JobProcessor:
    """
    Runs the per-job pipeline. One instance is shared by all workers of a
    batch; it holds no per-job state.
    """

    def __init__(
        self,
        remote: RemoteFileStore,
        classifier: Classifier,
        extractor: TextExtractor,
        rules: RuleSet,
        work_dir: Path,
    ):
        self.remote = remote
        self.classifier = classifier
        self.extractor = extractor
        self.rules = rules
        self.work_dir = Path(work_dir)

    def process(self, job: Job) -> JobResult:
        """Execute the pipeline for ``job`` and return its single result."""
        log.info("Processing paper", record_id=job.record_id, name=job.name)
        start_time = dt.datetime.now()
        try:
            content = self._fetch(job)
            self._persist_local_copy(job, content)
            text = self._extract(content)
            metadata, targets = self._classify(text)
            written = self._publish(job, content, metadata, targets)
        except StepFailed as e:
            log.warning(
                "Paper processing failed",
                record_id=job.record_id,
                name=job.name,
                error=str(e),
            )
            return JobFailure(record_id=job.record_id, name=job.name, error=str(e))

        elapsed_time = (dt.datetime.now() - start_time).total_seconds()
        log.info(
            "Finished processing paper",
            record_id=job.record_id,
            name=job.name,
            targets=written,
            elapsed_time=f"{elapsed_time:.2f}s",
        )
        return JobSuccess(
            record_id=job.record_id,
            name=job.name,
            metadata=metadata,
            target_paths=written,
        )

    def _fetch(self, job: Job) -> bytes:
        try:
            return self.remote.download(job.record_id)
        except Exception as e:
            raise StepFailed(f"Download failed: {e}") from e

    def _persist_local_copy(self, job: Job, content: bytes) -> Path:
        path = local_copy_path(self.work_dir, job.record_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as e:
            raise StepFailed(f"Failed to save local copy: {e}") from e
        return path

    def _extract(self, content: bytes) -> str:
        try:
            text = self.extractor.extract(content)
        except Exception as e:
            raise StepFailed(f"Text extraction failed: {e}") from e
        if not text.strip():
            raise StepFailed("Text extraction failed: No text extracted from PDF")
        return text

    def _classify(self, text: str) -> tuple[ArticleMetadata, list[str]]:
        try:
            result = self.classifier.classify(text, self.rules)
        except Exception as e:
            raise StepFailed(f"Classification failed: {e}") from e
        return result.metadata, [rule.target for rule in result.rules]

    def _publish(
        self,
        job: Job,
        content: bytes,
        metadata: ArticleMetadata,
        targets: list[str],
    ) -> list[str]:
        """
        Upload the paper and its sidecar to every target folder.

        Returns the paper paths written. Any failed upload fails the job.
        """
        sidecar = render_sidecar(metadata).encode("utf-8")
        written = []
        for target in targets:
            paper_path = join_remote(target, job.name)
            if paper_path in written:
                # Several rules may share one target folder.
                continue
            sidecar_path = f"{paper_path}{SIDECAR_SUFFIX}"
            for path, payload in ((paper_path, content), (sidecar_path, sidecar)):
                try:
                    self.remote.upload(path, payload)
                except Exception as e:
                    raise StepFailed(f"Upload to {path} failed: {e}") from e
            written.append(paper_path)
        return written
