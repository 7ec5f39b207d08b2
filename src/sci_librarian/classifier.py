"""
Paper Classification Module
===========================

This module asks an LLM to extract article metadata from the leading pages
of a paper and to match the paper against the filing rules. It provides a
strict parsing layer for the JSON response and a provider class used by the
per-job pipeline.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass

import openai
import structlog

from .config import Settings
from .llm import OpenAIChatMixin, build_openai_client
from .models import ArticleMetadata, Rule, RuleSet

log = structlog.get_logger(__name__)

CLASSIFICATION_PROMPT = """
You are a librarian filing scientific papers.

Extract the title, the authors and the abstract from the paper text below and
write a one-line summary of the paper. Then match the paper against the
categories below and select every category that applies. It is fine to
select no category at all.

<categories>
{categories}
</categories>

Respond ONLY with a single JSON object in this format, where "categories"
holds the exact names of the matched categories:

{{"title": "...", "authors": ["..."], "summary": "...", "abstract": "...", "categories": ["..."]}}

Do not wrap the JSON in markdown or add explanations.

Text:

<text>
{text}
</text>
""".strip()


class ClassificationError(Exception):
    """No model produced a usable classification."""


@dataclass(frozen=True)
class Classification:
    metadata: ArticleMetadata
    rules: list[Rule]


class Classifier(ABC):
    """Abstract interface of the classification service."""

    @abstractmethod
    def classify(self, text: str, rules: RuleSet) -> Classification:
        """Return the paper's metadata and the rules it matches."""
        raise NotImplementedError


def _extract_json(text: str) -> dict:
    """Parse JSON from raw model output, trimming surrounding text if needed."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end == -1 or end <= start:
            raise
        return json.loads(text[start : end + 1])


def _require_str(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ValueError(f"Classification response has no {key}")
    return value.strip()


def _require_str_list(data: dict, key: str) -> list[str]:
    value = data.get(key)
    if not isinstance(value, list):
        raise ValueError(f"Classification response has no {key}")
    if not all(isinstance(item, str) for item in value):
        raise ValueError(f"Classification response has non-string {key}")
    return [item.strip() for item in value if item.strip()]


def format_rules(rules: RuleSet) -> str:
    return "\n".join(
        f"Category: <name>{rule.name}</name> <description>{rule.description}</description>"
        for rule in rules
    )


def parse_classification_response(text: str, rules: RuleSet) -> Classification:
    """
    Parse and validate the classification response.

    Unknown category names are logged and dropped; matched rules are returned
    in rule-set order without duplicates.
    """
    raw = text.strip()
    if not raw:
        raise ValueError("Classification response is empty.")

    data = _extract_json(raw)
    if not isinstance(data, dict):
        raise ValueError("Classification response is not a JSON object.")

    metadata = ArticleMetadata(
        title=_require_str(data, "title"),
        authors=_require_str_list(data, "authors"),
        summary=_require_str(data, "summary"),
        abstract=_require_str(data, "abstract"),
    )

    categories = set(_require_str_list(data, "categories"))
    unknown = sorted(name for name in categories if rules.get(name) is None)
    if unknown:
        log.warning("Classification returned unknown categories", unknown=unknown)

    matched = [rule for rule in rules if rule.name in categories]
    return Classification(metadata=metadata, rules=matched)


class ClassificationProvider(OpenAIChatMixin, Classifier):
    """
    Classification provider that uses OpenAI-compatible chat completions.
    """

    def __init__(self, settings: Settings, client: openai.OpenAI | None = None):
        self.settings = settings
        self.client = client or build_openai_client(settings)

    def classify(self, text: str, rules: RuleSet) -> Classification:
        """
        Classify paper text, trying each configured model in turn.
        """
        if not text.strip():
            raise ClassificationError("Paper text is empty")

        prompt = CLASSIFICATION_PROMPT.format(categories=format_rules(rules), text=text)
        messages = [{"role": "user", "content": prompt}]

        last_error = "no model configured"
        for model in self.settings.AI_MODELS:
            params = {
                "model": model,
                "messages": messages,
                "response_format": {"type": "json_object"},
                "timeout": self.settings.REQUEST_TIMEOUT,
            }
            try:
                response = self._create_completion(**params)
                content = response.choices[0].message.content or ""
                result = parse_classification_response(content, rules)
            except (json.JSONDecodeError, ValueError, IndexError) as e:
                log.warning("Classification response invalid", model=model, error=str(e))
                last_error = f"invalid response from {model}: {e}"
                continue
            except openai.APIError as e:
                log.warning("Classification model failed", model=model, error=str(e))
                last_error = f"{model} failed: {e}"
                continue

            log.debug(
                "Classified paper",
                model=model,
                title=result.metadata.title,
                matched=[rule.name for rule in result.rules],
            )
            return result

        raise ClassificationError(f"All classification models failed ({last_error})")
