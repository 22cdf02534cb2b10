"""Structured generation — entity/relationship extraction and topic naming.

Both calls go through LLMLayer.complete_raw and parse the reply defensively:
strict JSON first (code fences stripped), then a single fallback that cuts
the outermost {...} block. The decoded object must validate against the
response model; anything else is an UpstreamFailure. Nothing is repaired.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Literal, Sequence, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from app.config import settings
from app.engines.topics.errors import TopicEngineError, UpstreamFailure
from app.llm.layer import message_text

logger = logging.getLogger(__name__)

EntityType = Literal["PERSON", "ORG", "GPE", "EVENT", "TECH", "WORK_OF_ART"]

_TYPE_ALIASES = {
    "person": "PERSON",
    "organization": "ORG",
    "organisation": "ORG",
    "place": "GPE",
    "location": "GPE",
    "event": "EVENT",
    "technology": "TECH",
    "product": "TECH",
    "creative_work": "WORK_OF_ART",
    "work": "WORK_OF_ART",
}

DEFAULT_TOPIC_TITLE = "Untitled topic"
MAX_TOPIC_KEYWORDS = 6

# Only a fence wrapping the whole reply; fences inside string values stay
_FENCE_RE = re.compile(r"\A```[A-Za-z]*\s*(.*?)\s*```\Z", re.DOTALL)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

M = TypeVar("M", bound=BaseModel)


# === Response models ===


class ExtractedEntity(BaseModel):
    name: str = Field(min_length=1)
    type: EntityType
    description: str | None = None
    aliases: list[str] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def _map_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            key = v.strip()
            return _TYPE_ALIASES.get(key.lower(), key.upper())
        return v

    @field_validator("aliases", mode="before")
    @classmethod
    def _clean_aliases(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, list):
            return [str(a).strip() for a in v if str(a).strip()]
        return v


class ExtractedRelationship(BaseModel):
    source_name: str = Field(min_length=1)
    target_name: str = Field(min_length=1)
    relation: str = Field(min_length=1)
    evidence: str | None = None


class ExtractionResult(BaseModel):
    entities: list[ExtractedEntity] = Field(default_factory=list)
    relationships: list[ExtractedRelationship] = Field(default_factory=list)


class TopicReport(BaseModel):
    title: str = DEFAULT_TOPIC_TITLE
    keywords: list[str] = Field(default_factory=list)
    report_markdown: str = ""

    @field_validator("title", mode="before")
    @classmethod
    def _default_title(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return DEFAULT_TOPIC_TITLE
        return v.strip() if isinstance(v, str) else v

    @field_validator("keywords", mode="before")
    @classmethod
    def _trim_keywords(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, list):
            return [str(k).strip() for k in v if str(k).strip()][:MAX_TOPIC_KEYWORDS]
        return v


# === Parsing ===


def parse_structured(raw_text: str, model: type[M]) -> M:
    """Decode a model reply into `model`, or raise UpstreamFailure."""
    text = (raw_text or "").strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    if not text:
        raise UpstreamFailure("Empty reply from structured generation")

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = _OBJECT_RE.search(text)
        if not match:
            raise UpstreamFailure("No JSON object in structured generation reply", details=text[:200])
        try:
            data = json.loads(match.group())
        except json.JSONDecodeError as e:
            raise UpstreamFailure("Malformed JSON in structured generation reply", details=str(e)) from e

    if not isinstance(data, dict):
        raise UpstreamFailure(f"Expected a JSON object, got {type(data).__name__}")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise UpstreamFailure(f"Reply does not match {model.__name__}", details=e.errors()) from e


# === Prompts ===

_EXTRACTION_SYSTEM = """You build knowledge graphs. Extract the core entities in the given text and the relationships between them.

Rules:
1. Entity type is one of: PERSON, ORG, GPE (geo-political place), EVENT, TECH (technology or product), WORK_OF_ART.
2. Relations are short verbs or phrases such as "founded", "employed by", "competitor of", "invested in", "located in".
3. Every relationship carries an evidence snippet quoted from the text.
4. Merge synonyms; use the most common name as the entity name and list the rest as aliases.

Return ONLY a JSON object with fields:
- entities: array of {name, type, description, aliases}
- relationships: array of {source_name, target_name, relation, evidence}"""

_NAMING_SYSTEM = """You are the topic editor of a personal knowledge base. Use only the note snippets given; do not invent facts.

Return ONLY a JSON object with fields:
- title: topic title (at most 16 words)
- keywords: array of short keywords (at most 6)
- report_markdown: a structured Markdown report (overview / key points / timeline hints / open questions).

When a statement comes from a note, end the sentence with the citation marker [note:<id>]."""


def _note_block(index: int, note: Any, snippet_chars: int) -> str:
    snippet = next(
        (s for s in (getattr(note, "excerpt", None), getattr(note, "content_text", None)) if s and s.strip()),
        "",
    )
    title = json.dumps(getattr(note, "title", None) or "", ensure_ascii=False)
    return f"[#{index}] [note:{note.id}] title={title}\n{snippet[:snippet_chars]}"


class StructuredGenerator:
    """Client of the structured-generation collaborator."""

    def __init__(self, llm_layer) -> None:
        self.llm = llm_layer

    async def _complete(self, system: str, prompt: str, model_tier: str, temperature: float) -> str:
        try:
            message, meta = await self.llm.complete_raw(
                messages=[{"role": "user", "content": prompt}],
                model_tier=model_tier,
                system=self.llm.build_cached_system(system),
                temperature=temperature,
            )
        except TopicEngineError:
            raise
        except Exception as e:
            logger.warning("Structured generation call failed: %s", e)
            raise UpstreamFailure("Structured generation call failed", details=str(e)) from e
        logger.debug("Structured generation via %s ($%.4f)", meta.model_version, meta.cost)
        return message_text(message)

    async def extract_graph(self, text: str) -> ExtractionResult:
        prompt = f"Extract the knowledge graph from this text:\n\n{text[:settings.extraction_max_chars]}"
        raw = await self._complete(_EXTRACTION_SYSTEM, prompt, settings.extraction_model_tier, 0.1)
        return parse_structured(raw, ExtractionResult)

    async def name_topic(self, notes: Sequence[Any]) -> TopicReport:
        reps = list(notes)[: settings.report_representatives]
        body = "\n\n---\n\n".join(
            _note_block(i, n, settings.report_snippet_chars) for i, n in enumerate(reps, start=1)
        )
        prompt = f"Write the topic title, keywords and report for these note snippets:\n\n{body}"
        raw = await self._complete(
            _NAMING_SYSTEM, prompt, settings.naming_model_tier, settings.naming_temperature
        )
        return parse_structured(raw, TopicReport)
