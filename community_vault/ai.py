from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openai import OpenAI, OpenAIError

from .errors import NotConfiguredError, UpstreamError

logger = logging.getLogger(__name__)

SUMMARY_INPUT_CHARS = 30000
EMBEDDING_INPUT_CHARS = 8000

DOCUMENT_SYSTEM_PROMPT = (
    "You are a world-class knowledge management assistant. Respond in valid JSON "
    "with keys `summary` and `keyPoints` (array of strings)."
)
PROJECT_SYSTEM_PROMPT = (
    "You combine multiple document summaries into one cohesive overview. Return JSON "
    "with keys `summary` (<= 180 words) and `keyPoints` (array of strings)."
)


@dataclass
class DocumentSummary:
    summary: str
    key_points: List[str] = field(default_factory=list)


def parse_summary(raw: str, require_key_points: bool = True) -> DocumentSummary:
    """
    Parse the model's JSON reply. Anything malformed degrades to the raw
    text as the summary with no key points.
    """
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.error("failed to parse summary output: %r", raw[:500])
        return DocumentSummary(summary=raw, key_points=[])

    if not isinstance(parsed, dict):
        return DocumentSummary(summary=raw, key_points=[])

    summary = parsed.get("summary")
    key_points = parsed.get("keyPoints")
    if not isinstance(summary, str) or not summary:
        logger.error("summary payload missing `summary`: %r", raw[:500])
        return DocumentSummary(summary=raw, key_points=[])
    if not isinstance(key_points, list):
        if require_key_points:
            logger.error("summary payload missing `keyPoints`: %r", raw[:500])
            return DocumentSummary(summary=raw, key_points=[])
        key_points = []
    return DocumentSummary(summary=summary, key_points=[str(p) for p in key_points])


class AIService:
    """Summaries, embeddings and transcription through the OpenAI API."""

    def __init__(
        self,
        api_key: str = "",
        summary_model: str = "gpt-4o-mini",
        embedding_model: str = "text-embedding-3-large",
        transcription_model: str = "gpt-4o-mini-transcribe",
        timeout: float = 30.0,
        client: Optional[Any] = None,
    ) -> None:
        self.summary_model = summary_model
        self.embedding_model = embedding_model
        self.transcription_model = transcription_model
        if client is None and api_key:
            client = OpenAI(api_key=api_key, timeout=timeout)
        self._client = client

    @classmethod
    def from_settings(cls, settings) -> "AIService":
        return cls(
            api_key=settings.openai_api_key,
            summary_model=settings.summary_model,
            embedding_model=settings.embedding_model,
            transcription_model=settings.transcription_model,
            timeout=settings.provider_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        return self._client is not None

    @property
    def client(self):
        if self._client is None:
            raise NotConfiguredError("OpenAI API key not configured")
        return self._client

    def _complete_json(self, system_prompt: str, user_prompt: str) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.summary_model,
                max_tokens=600,
                temperature=0.2,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            )
        except OpenAIError as exc:
            raise UpstreamError("Summarization request failed") from exc

        content = response.choices[0].message.content if response.choices else None
        return (content or "").strip() or "{}"

    def summarize_content(self, content: str, title: str, file_type: str) -> DocumentSummary:
        prompt = "\n".join([
            f'You are summarizing a {file_type.lower()} titled "{title}".',
            "Produce:",
            "1. A concise summary (max 120 words).",
            "2. 3-5 bullet key points capturing the most actionable insights.",
            "",
            "Respond in valid JSON format with keys `summary` and `keyPoints` (array of strings).",
            "",
            "Content:",
            content[:SUMMARY_INPUT_CHARS],
        ])
        return parse_summary(self._complete_json(DOCUMENT_SYSTEM_PROMPT, prompt))

    def summarize_project(self, files: List[Dict[str, Any]]) -> DocumentSummary:
        combined = "\n\n".join(
            "Title: {}\nSummary: {}\nKey Points: {}".format(
                item.get("title", ""),
                item.get("summary") or "",
                ", ".join(item.get("key_points") or []),
            )
            for item in files
        )
        raw = self._complete_json(PROJECT_SYSTEM_PROMPT, f"Summaries:\n{combined}")
        return parse_summary(raw, require_key_points=False)

    def build_embedding(self, text: str) -> List[float]:
        try:
            response = self.client.embeddings.create(
                model=self.embedding_model,
                input=text[:EMBEDDING_INPUT_CHARS],
            )
        except OpenAIError as exc:
            raise UpstreamError("Embedding request failed") from exc
        return list(response.data[0].embedding)

    def transcribe(self, data: bytes, filename: str) -> str:
        try:
            result = self.client.audio.transcriptions.create(
                model=self.transcription_model,
                file=(filename, data),
            )
        except OpenAIError as exc:
            raise UpstreamError("Transcription request failed") from exc
        return result.text


def query_knowledge_base(ai: AIService, vectors, user_id: str, query: str, top_k: int = 6):
    """Semantic search over the caller's own namespace."""
    embedding = ai.build_embedding(query)
    return vectors.query(user_id, embedding, top_k=top_k)
