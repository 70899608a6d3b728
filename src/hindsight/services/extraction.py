"""LLM-backed enrichment of stored memories.

Two operations use the completion provider:

* ``extract_entities_and_facts`` runs when a memory is stored and pulls named
  entities plus short factual statements out of it, optionally steered by the
  bank's domain context and the caller's task context.
* ``generate_insights`` runs on reflect and turns a set of relevant memories
  into a handful of observations.

Extraction never fails the store operation: provider errors and replies that
do not contain a JSON object degrade to empty results.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Protocol, Sequence

from hindsight.domain.errors import CompletionError

logger = logging.getLogger(__name__)

REFLECT_SYSTEM_PROMPT = "You are analyzing stored memories to find patterns and insights."
INSIGHT_CONFIDENCE = 0.8

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class Completer(Protocol):
    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        ...


@dataclass(frozen=True)
class ExtractionResult:
    entities: List[str] = field(default_factory=list)
    facts: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Insight:
    content: str
    confidence: float = INSIGHT_CONFIDENCE


def build_extraction_system_prompt(bank_context: Optional[str] = None, action_context: Optional[str] = None) -> str:
    parts = ["You are an entity and fact extractor."]
    if bank_context:
        parts.append(f"DOMAIN CONTEXT: {bank_context}")
    if action_context:
        parts.append(f"CURRENT TASK CONTEXT: {action_context}")
    parts.append(
        "Given the above context (if any), extract from the text:\n"
        "1. ENTITIES: Named items relevant to the domain (classes, functions, modules, files, "
        "UI elements, concepts)\n"
        "2. FACTS: Key assertions or learnings that can be stated as short sentences\n\n"
        "Respond ONLY with valid JSON in this exact format:\n"
        '{"entities": ["Entity1", "Entity2"], "facts": ["Fact 1", "Fact 2"]}\n\n'
        "Keep entities as single words or short phrases. Keep facts concise (under 20 words each)."
    )
    return "\n\n".join(parts)


def build_extraction_prompt(content: str) -> str:
    return f'Extract entities and facts from this content:\n\n"{content}"\n\nRespond with JSON only:'


def parse_extraction_response(response: str) -> Optional[ExtractionResult]:
    match = _JSON_OBJECT_RE.search(response or "")
    if match is None:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None
    return ExtractionResult(
        entities=_string_list(parsed.get("entities")),
        facts=_string_list(parsed.get("facts")),
    )


async def extract_entities_and_facts(
    provider: Completer,
    content: str,
    bank_context: Optional[str] = None,
    action_context: Optional[str] = None,
) -> ExtractionResult:
    system_prompt = build_extraction_system_prompt(bank_context, action_context)
    logger.info("Extracting entities and facts via LLM...")
    try:
        response = await provider.complete(build_extraction_prompt(content), system_prompt)
    except CompletionError as exc:
        logger.error("Entity extraction error: %s", exc)
        return ExtractionResult()

    result = parse_extraction_response(response)
    if result is None:
        logger.warning("Could not parse LLM response as JSON")
        return ExtractionResult()
    logger.info("Extracted %d entities, %d facts", len(result.entities), len(result.facts))
    return result


def format_memory_context(memories: Sequence[Mapping[str, Any]]) -> str:
    lines = []
    for idx, memory in enumerate(memories, start=1):
        kind = str(memory.get("type") or "memory")
        lines.append(f"{idx}. [{kind}] {memory.get('content') or ''}")
    return "\n".join(lines)


async def generate_insights(
    provider: Completer,
    query: str,
    memories: Sequence[Mapping[str, Any]],
) -> List[Insight]:
    if not memories:
        return []
    prompt = (
        f"Based on these memories:\n\n{format_memory_context(memories)}\n\n"
        f"Query: {query}\n\n"
        "Provide 2-3 key insights or patterns you notice. Be concise."
    )
    response = await provider.complete(prompt, REFLECT_SYSTEM_PROMPT)
    insights = [Insight(content=line) for line in response.split("\n") if line.strip()]
    logger.info("Generated %d insights", len(insights))
    return insights


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]
