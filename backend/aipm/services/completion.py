"""
Completion service adapter.

Wraps an OpenAI-compatible chat completions endpoint. The client is built
lazily so the API can start without a key; calls fail with
``AiServiceError`` until one is configured. Nothing is retried.
"""
from dataclasses import dataclass
from typing import Iterator, List, Optional
import json
import logging
import re

import openai
from pydantic import ValidationError as PydanticValidationError

from aipm.config import Settings
from aipm.core.enums import MessageRole
from aipm.core.workflow import STEP_GUIDANCE
from aipm.errors import AiServiceError, ValidationError
from aipm.schemas.chat import ChatMessage
from aipm.schemas.documents import ConflictAnalysis

logger = logging.getLogger(__name__)

BASE_PROMPT = "You are an AI product manager. Be concise, structured, and actionable."

FILTERED = "[FILTERED]"

# Attempts to override the system prompt or leak it.
INJECTION_PATTERNS = [
    re.compile(r"\b(ignore|forget|disregard)\s+(all\s+)?(previous|above|prior|earlier)\s+(instructions?|commands?|prompts?)", re.I),
    re.compile(r"\b(ignore|forget|disregard)\s+all\s+(instructions?|commands?|prompts?)", re.I),
    re.compile(r"\byou\s+are\s+now\s+an?\s+(different|new)\b", re.I),
    re.compile(r"\bfrom\s+now\s+on\s+you\s+are\b", re.I),
    re.compile(r"\b(pretend|act)\s+(to\s+be\s+|as\s+)?an?\s+(different|new)\s+(ai|assistant|model)\b", re.I),
    re.compile(r"\b(show|reveal|display|print)\s+(me\s+)?(your|the)\s+system\s+(prompt|instructions?)", re.I),
    re.compile(r"\b(show|reveal|display|print)\s+(me\s+)?your\s+(prompt|instructions?)", re.I),
    re.compile(r"\bwhat\s+(is|are)\s+(your|the)\s+system\s+(prompt|instructions?)", re.I),
    re.compile(r"\bignore\s+(all\s+)?(safety|ethical|moral)\s+(guidelines?|constraints?|rules?)", re.I),
    re.compile(r"\b(bypass|disable)\s+(safety|security|content)\s+(filters?|checks?|mode)", re.I),
    re.compile(r"<\|[^|>]*\|>"),
    re.compile(r"\[/?INST\]|<</?SYS>>"),
]


def find_injection(text: str) -> Optional[str]:
    """The first injection pattern matching ``text``, if any."""
    for pattern in INJECTION_PATTERNS:
        if pattern.search(text):
            return pattern.pattern
    return None


def screen_prompt(text: str) -> str:
    if find_injection(text) is not None:
        logger.warning(f"Rejected a prompt of {len(text)} characters matching an injection pattern")
        raise ValidationError("Message was rejected by the prompt filter")
    return text


def sanitize_prompt_input(text: str) -> str:
    for pattern in INJECTION_PATTERNS:
        text = pattern.sub(FILTERED, text)
    return text


def _screen_latest(messages: List[ChatMessage]) -> None:
    for message in reversed(messages):
        if message.role == MessageRole.USER:
            screen_prompt(message.content)
            return


@dataclass
class StreamChunk:
    content: str
    is_complete: bool
    error: Optional[str] = None


def build_system_prompt(workflow_step: int, project_context: Optional[str] = None) -> str:
    lines = [BASE_PROMPT, f"Step {workflow_step}: {STEP_GUIDANCE[workflow_step]}"]
    if project_context:
        lines.append(f"Project context:\n{sanitize_prompt_input(project_context)}")
    return "\n".join(lines)


def build_chat_messages(
    messages: List[ChatMessage], workflow_step: int, project_context: Optional[str] = None
) -> List[dict]:
    chat = [{"role": "system", "content": build_system_prompt(workflow_step, project_context)}]
    for message in messages:
        role = "user" if message.role == MessageRole.USER else "assistant"
        chat.append({"role": role, "content": message.content})
    return chat


@dataclass
class ReferenceDocument:
    workflow_step: int
    title: str
    version: int
    author: str
    content: str


CONFLICT_SYSTEM_PROMPT = (
    "You analyze planning documents for conflicts. "
    "Compare the documents you are given and answer with JSON only."
)
CONFLICT_TEMPERATURE = 0.3
CONFLICT_JSON_SHAPE = """{
  "hasConflicts": boolean,
  "conflictLevel": "none" | "minor" | "major" | "critical",
  "conflicts": [{"type": "content" | "requirement" | "design" | "technical", "description": "...", "conflictingDocument": "...", "severity": "low" | "medium" | "high", "suggestion": "..."}],
  "recommendations": ["..."],
  "summary": "..."
}"""
UNPARSED_ANALYSIS = ConflictAnalysis(
    recommendations=["The AI analysis could not be read. Review the documents manually."],
    summary="The AI analysis result could not be parsed.",
)


def build_conflict_prompt(
    title: str, content: str, workflow_step: int, official_documents: List[ReferenceDocument]
) -> str:
    lines = [
        f"## Current document (workflow step {workflow_step})",
        f"Title: {sanitize_prompt_input(title)}",
        "Content:",
        sanitize_prompt_input(content),
        "",
        "## Official documents",
    ]
    for index, doc in enumerate(official_documents, start=1):
        lines.extend([
            f"### Document {index} (workflow step {doc.workflow_step})",
            f"Title: {doc.title}",
            f"Author: {doc.author}",
            f"Version: v{doc.version}",
            "Content:",
            doc.content,
            "",
        ])
    lines.extend([
        "## Instructions",
        "Check for contradicting content, requirements, design decisions and technical choices.",
        "Include suggestions that improve consistency even when nothing conflicts.",
        "Answer with JSON in this shape:",
        CONFLICT_JSON_SHAPE,
    ])
    return "\n".join(lines)


def parse_conflict_analysis(reply: str) -> ConflictAnalysis:
    """Read the JSON object out of a model reply; unreadable replies give a safe default."""
    match = re.search(r"\{.*\}", reply, re.S)
    try:
        return ConflictAnalysis.model_validate(json.loads(match.group(0) if match else reply))
    except (ValueError, PydanticValidationError) as e:
        logger.warning(f"Could not parse conflict analysis reply: {e}")
        return UNPARSED_ANALYSIS.model_copy(deep=True)


def map_ai_error(error: Exception) -> AiServiceError:
    """Translate an SDK failure into AiServiceError with a user-facing message."""
    if isinstance(error, AiServiceError):
        return error
    if isinstance(error, openai.APITimeoutError):
        return AiServiceError("AI request timed out. Try again later.")
    if isinstance(error, openai.RateLimitError):
        return AiServiceError("AI rate limit exceeded. Try again later.")
    if isinstance(error, openai.AuthenticationError):
        return AiServiceError("AI authentication failed.")
    if isinstance(error, openai.APIConnectionError):
        return AiServiceError("Could not reach the AI service.")
    if isinstance(error, openai.APIError):
        return AiServiceError(f"AI service error: {error.message}")
    return AiServiceError(str(error) or "AI service error.")


class CompletionService:
    def __init__(self, settings: Settings):
        self.api_key = settings.openai_api_key
        self.base_url = settings.openai_base_url
        self.model = settings.openai_model
        self.temperature = settings.openai_temperature
        self.max_tokens = settings.openai_max_tokens
        self.timeout = settings.ai_timeout_seconds
        self._client = None

    def _get_client(self) -> openai.OpenAI:
        if not self.api_key:
            logger.warning("Completion requested but no AI API key is configured")
            raise AiServiceError("AI service is not configured")
        if self._client is None:
            self._client = openai.OpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def generate_response(
        self, messages: List[ChatMessage], workflow_step: int, project_context: Optional[str] = None
    ) -> str:
        _screen_latest(messages)
        client = self._get_client()
        try:
            completion = client.chat.completions.create(
                model=self.model,
                messages=build_chat_messages(messages, workflow_step, project_context),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except openai.OpenAIError as e:
            logger.error(f"AI completion failed for step {workflow_step}: {e}")
            raise map_ai_error(e) from e

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            logger.error(f"AI completion for step {workflow_step} returned an empty response")
            raise AiServiceError("AI response was empty")
        return content

    def generate_streaming_response(
        self, messages: List[ChatMessage], workflow_step: int, project_context: Optional[str] = None
    ) -> Iterator[StreamChunk]:
        """Yield the accumulated reply after each delta, then one complete chunk.

        Failures, including a rejected prompt, end the stream with a complete
        chunk carrying ``error``.
        """
        full_content = ""
        try:
            _screen_latest(messages)
            client = self._get_client()
            stream = client.chat.completions.create(
                model=self.model,
                messages=build_chat_messages(messages, workflow_step, project_context),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                stream=True,
            )
            for chunk in stream:
                delta = chunk.choices[0].delta.content if chunk.choices else None
                if not delta:
                    continue
                full_content += delta
                yield StreamChunk(content=full_content, is_complete=False)
        except ValidationError as e:
            yield StreamChunk(content="", is_complete=True, error=e.message)
            return
        except (openai.OpenAIError, AiServiceError) as e:
            logger.error(f"AI streaming failed for step {workflow_step}: {e}")
            yield StreamChunk(content="", is_complete=True, error=map_ai_error(e).message)
            return

        if not full_content:
            yield StreamChunk(content="", is_complete=True, error="AI response was empty")
            return
        yield StreamChunk(content=full_content, is_complete=True)

    def analyze_conflicts(
        self,
        title: str,
        content: str,
        workflow_step: int,
        official_documents: List[ReferenceDocument],
    ) -> ConflictAnalysis:
        """Ask the model to compare a draft with the official documents of other steps."""
        client = self._get_client()
        try:
            completion = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": CONFLICT_SYSTEM_PROMPT},
                    {"role": "user", "content": build_conflict_prompt(title, content, workflow_step, official_documents)},
                ],
                temperature=CONFLICT_TEMPERATURE,
                max_tokens=self.max_tokens,
            )
        except openai.OpenAIError as e:
            logger.error(f"Conflict analysis failed for step {workflow_step}: {e}")
            raise map_ai_error(e) from e

        reply = completion.choices[0].message.content if completion.choices else None
        if not reply:
            raise AiServiceError("Conflict analysis returned an empty response")
        return parse_conflict_analysis(reply)
