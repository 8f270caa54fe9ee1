"""Extraction collaborator: turn a conversation transcript into submission fields.

The language model is a black box that takes a prompt and returns text. The
text is treated as untrusted:

1. fenced-code markers (```` ``` ```` with an optional language tag) are removed,
2. the first balanced ``{...}`` span is located and parsed as JSON,
3. only known submission columns survive, coerced to their column types;
   the transcript, timestamps and id are never taken from the reply.

A reply that cannot be parsed raises :class:`MalformedExtraction`; callers in
the reconciliation pass treat that as a per-record soft failure.
"""
from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

from fuze import services

log = logging.getLogger(__name__)


class CollaboratorError(Exception):
    """Upstream AI call failed or returned a non-success status."""

    def __init__(self, message: str, status_code: int = 502, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class MalformedExtraction(Exception):
    """The collaborator's reply could not be parsed into a JSON object."""


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

EXTRACTION_SYSTEM_PROMPT = (
    "You are a data extraction specialist. Return ONLY valid JSON with no markdown "
    "code blocks, no backticks, no explanation text - just pure JSON starting with "
    "{ and ending with }."
)

# Fields the model is never allowed to set, whatever it returns.
EXCLUDED_FIELDS = ("id", "conversation_transcript", "created_at", "updated_at", "extraction_status")

EXTRACTABLE_FIELDS = tuple(f for f in services.SUBMISSION_FIELDS if f not in EXCLUDED_FIELDS)

_SCHEMA_LINES = (
    ('company_name', '"string or null"'),
    ('contact_email', '"string or null"'),
    ('contact_phone', '"string or null"'),
    ('company_size', '"string or null"'),
    ('company_type', '"string or null"'),
    ('technology_name', '"string or null"'),
    ('technology_description', '"brief 1-sentence summary"'),
    ('detailed_description', '"REQUIRED: 3-5 paragraph detailed technical description"'),
    ('technology_category', '"string or null"'),
    ('unique_value_proposition', '"string or null"'),
    ('military_applications', '"string or null"'),
    ('commercial_applications', '"string or null"'),
    ('trl_level', 'number (1-9) or null'),
    ('mrl_level', 'number or null'),
    ('development_stage', '"string or null"'),
    ('ip_status', '"string or null"'),
    ('team_size', 'number or null'),
    ('team_expertise', '"string or null"'),
    ('funding_pathway', '"string or null"'),
    ('funding_amount_requested', 'number or null'),
    ('previous_fuze_awards', '"string or null"'),
    ('previous_fuze_amount', 'number or null'),
    ('development_timeline', '"string or null"'),
    ('sam_gov_registered', 'boolean or null'),
    ('dsip_registered', 'boolean or null'),
    ('capability_score', 'number (0-10) or null'),
    ('ai_assessment', '"REQUIRED: 2-3 paragraph brutally honest military value analysis"'),
    ('recommendation', '"' + " / ".join(services.RECOMMENDATIONS) + '"'),
)

EXTRACTION_PROMPT_TEMPLATE = """\
You are a data extraction specialist for Army FUZE submissions. Analyze the \
following conversation transcript and extract structured data.

CONVERSATION TRANSCRIPT:
{transcript}

YOUR TASK:
Extract ALL mentioned information from the conversation and provide it in JSON \
format. For fields not mentioned, use null.

CRITICAL: You must provide these two detailed outputs:
1. "detailed_description": A comprehensive 3-5 paragraph technical description \
of the technology. Include: how it works, key technical specifications, unique \
innovations, current development state, and future potential. Be thorough and \
technical.

2. "ai_assessment": A brutally honest 2-3 paragraph military value analysis. \
Answer: Is this valuable to the military? Why or why not? What are the strengths \
and weaknesses? What are the risks? Be direct and critical where needed.

"recommendation" must be exactly one of: {recommendations}.

Return ONLY valid JSON in this exact format (no markdown, no backticks):
{schema}

DO NOT include conversation_transcript or timestamp in your JSON output - these \
will be added automatically.
"""


def _schema_block() -> str:
    body = ",\n".join(f'  "{name}": {kind}' for name, kind in _SCHEMA_LINES)
    return "{\n" + body + "\n}"


def build_extraction_prompt(transcript: str) -> str:
    return EXTRACTION_PROMPT_TEMPLATE.format(
        transcript=transcript,
        recommendations=", ".join(services.RECOMMENDATIONS),
        schema=_schema_block(),
    )


# ---------------------------------------------------------------------------
# LLM Client
# ---------------------------------------------------------------------------


class LLMClient:
    """Async single-turn completion client for OpenAI-compatible APIs and Anthropic."""

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ):
        self.provider = provider or os.environ.get("LLM_PROVIDER", "openai")
        self.model = model or os.environ.get("LLM_MODEL", "")
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._api_key = api_key
        self._base_url = base_url
        self._client: Any = None
        self._init_client()

    def _init_client(self) -> None:
        if self.provider == "anthropic":
            import anthropic
            self.model = self.model or "claude-haiku-4-5-20251001"
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key or os.environ.get("ANTHROPIC_API_KEY")
            )
        elif self.provider in ("openai", "openai_compatible"):
            import openai
            self.model = self.model or "gpt-4-turbo"
            kwargs: dict[str, Any] = {}
            key = self._api_key or os.environ.get("OPENAI_API_KEY")
            if key:
                kwargs["api_key"] = key
            url = self._base_url or os.environ.get("OPENAI_BASE_URL")
            if url:
                kwargs["base_url"] = url
            self._client = openai.AsyncOpenAI(**kwargs)
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider!r}")

    async def complete(self, system: str, user: str) -> str:
        """Send system+user messages, return the raw reply text."""
        try:
            if self.provider == "anthropic":
                response = await self._client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                    system=system,
                    messages=[{"role": "user", "content": user}],
                )
                return response.content[0].text
            response = await self._client.chat.completions.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            )
            return response.choices[0].message.content or ""
        except Exception as exc:
            status = getattr(exc, "status_code", None) or 502
            raise CollaboratorError(f"LLM API call failed: {exc}", status_code=status) from exc


# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\r?\n?")


def strip_fences(text: str) -> str:
    """Remove every fenced-code marker, keeping the fenced content."""
    return _FENCE_RE.sub("", text).strip()


def find_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` span in *text*, or None.

    Braces inside JSON string literals do not count towards the balance.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = escaped = False
        for idx in range(start, len(text)):
            ch = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:idx + 1]
        # Unbalanced from this brace; try the next one
        start = text.find("{", start + 1)
    return None


def parse_extraction(text: str) -> dict[str, Any]:
    cleaned = strip_fences(text or "")
    span = find_json_object(cleaned)
    if span is None:
        raise MalformedExtraction(f"No JSON object found in reply: {cleaned[:200]!r}")
    try:
        payload = json.loads(span)
    except json.JSONDecodeError as exc:
        raise MalformedExtraction(f"Reply is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedExtraction("Reply JSON is not an object")
    return payload


def sanitize_extraction(payload: dict[str, Any]) -> dict[str, Any]:
    """Reduce a parsed reply to coerced, writable submission fields."""
    fields = services.writable_fields(payload, EXTRACTABLE_FIELDS)
    rec = fields.get("recommendation")
    if rec is not None:
        fields["recommendation"] = _normalize_recommendation(rec)
    return fields


def _normalize_recommendation(value: str) -> str | None:
    folded = value.strip().casefold()
    for label in services.RECOMMENDATIONS:
        if label.casefold() == folded:
            return label
    log.warning("Unrecognized recommendation %r, dropping it", value)
    return None


async def extract_fields(client: LLMClient, transcript: str) -> dict[str, Any]:
    """Run one extraction round-trip and return sanitized fields."""
    reply = await client.complete(EXTRACTION_SYSTEM_PROMPT, build_extraction_prompt(transcript))
    return sanitize_extraction(parse_extraction(reply))
