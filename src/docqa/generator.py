"""
generator.py — Streaming answers and suggested questions
=========================================================

Two calls against one hosted model:

  Answer      question + context chunks -> streamed text fragments
  Suggestions first chunks of the doc   -> JSON array of 3 questions

Provider-agnostic:
  Every provider sits behind the same LLMBackend interface:
  - Google Gemini (google-genai)             — default, native JSON schema
  - Anthropic Claude (native SDK)
  - OpenAI-compatible APIs (GPT, OpenRouter, DeepSeek, ...)
  - Ollama (local models, no API key needed)

  Two methods: stream(prompt) yields fragments, generate_json(prompt,
  schema) returns raw JSON text. Nothing else in the package touches an
  SDK.

The backend is built once with create_backend() and passed into the
session. A missing API key fails right there, not halfway through the
first question.

API keys:
  export GEMINI_API_KEY=...        # Gemini (GOOGLE_API_KEY / API_KEY also work)
  export ANTHROPIC_API_KEY=...     # Claude
  export OPENAI_API_KEY=...        # OpenAI
  export OPENROUTER_API_KEY=...    # OpenRouter specifically

Usage:
  from docqa.generator import create_backend, generate_answer_stream
  backend = create_backend(preset="gemini")
  await generate_answer_stream(backend, "What is X?", context, print)
"""

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable

from docqa.errors import ConfigurationError, GenerationError


logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 3

CODE_FENCE_RE = re.compile(r"^```[A-Za-z]*\s*\n?(.*?)\n?\s*```$", re.DOTALL)


# ==================== PROMPTS ====================

ANSWER_PROMPT = """You are a helpful assistant that answers questions based on the provided document context.
Your goal is to provide a clear and concise answer using ONLY the information from the context below.
Format your answer using markdown where appropriate (e.g., lists, bolding).
If the answer cannot be found in the context, state that you cannot find the answer in the provided document.
Do not use any external knowledge.

--- CONTEXT ---
{context}
--- END CONTEXT ---

QUESTION: {query}

ANSWER:
"""

SUGGESTION_PROMPT = """Based on the following document context, generate {n} concise and distinct questions that a user might ask.
Respond with ONLY a JSON array of strings, one question per item.

--- CONTEXT ---
{context}
--- END CONTEXT ---
"""

QUESTIONS_SCHEMA = {
    "type": "array",
    "items": {
        "type": "string",
        "description": "A potential user question about the document.",
    },
}


def build_answer_prompt(query: str, context: str) -> str:
    return ANSWER_PROMPT.format(context=context, query=query)


def build_suggestion_prompt(context: str) -> str:
    return SUGGESTION_PROMPT.format(context=context, n=MAX_SUGGESTIONS)


# ==================== LLM BACKENDS ====================

class LLMBackend(ABC):
    """
    Abstract base for model providers.

    stream():        prompt -> async iterator of text fragments, in order
    generate_json(): prompt + JSON schema -> raw response text

    Backends don't catch anything. Errors surface to the caller, which
    decides whether they're fatal (answers) or ignorable (suggestions).
    """

    model: str

    @abstractmethod
    def stream(self, prompt: str) -> AsyncIterator[str]:
        ...

    @abstractmethod
    async def generate_json(self, prompt: str, schema: dict) -> str:
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        ...


def _to_gemini_schema(schema: dict):
    """Translate a (small) JSON schema dict into google-genai's Schema type."""
    from google.genai import types

    return types.Schema(
        type=types.Type(schema["type"].upper()),
        description=schema.get("description"),
        items=_to_gemini_schema(schema["items"]) if "items" in schema else None,
    )


class GeminiBackend(LLMBackend):
    """Google Gemini via the google-genai SDK. Supports response schemas natively."""

    def __init__(self, model: str, temperature: float | None = None, api_key: str | None = None):
        from google import genai

        api_key = (
            api_key
            or os.environ.get("GEMINI_API_KEY")
            or os.environ.get("GOOGLE_API_KEY")
            or os.environ.get("API_KEY")
        )
        if not api_key:
            raise ConfigurationError(
                "GEMINI_API_KEY not set.\n"
                "  export GEMINI_API_KEY='...'"
            )
        self.client = genai.Client(api_key=api_key)
        self.model = model
        self.temperature = temperature

    @property
    def name(self) -> str:
        return "gemini"

    def _config(self, **kwargs):
        from google.genai import types

        if self.temperature is not None:
            kwargs["temperature"] = self.temperature
        return types.GenerateContentConfig(**kwargs) if kwargs else None

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        response_stream = await self.client.aio.models.generate_content_stream(
            model=self.model,
            contents=prompt,
            config=self._config(),
        )
        async for chunk in response_stream:
            if chunk.text:
                yield chunk.text

    async def generate_json(self, prompt: str, schema: dict) -> str:
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=prompt,
            config=self._config(
                response_mime_type="application/json",
                response_schema=_to_gemini_schema(schema),
            ),
        )
        return (response.text or "").strip()


class ClaudeBackend(LLMBackend):
    """Anthropic Claude via native SDK. JSON shape is enforced by the prompt only."""

    def __init__(self, model: str, max_tokens: int = 1024, temperature: float = 0.0,
                 api_key: str | None = None):
        import anthropic

        api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise ConfigurationError(
                "ANTHROPIC_API_KEY not set.\n"
                "  export ANTHROPIC_API_KEY='sk-ant-...'"
            )
        self.client = anthropic.AsyncAnthropic(api_key=api_key)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    @property
    def name(self) -> str:
        return "claude"

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        async with self.client.messages.stream(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            messages=[{"role": "user", "content": prompt}],
        ) as stream:
            async for text in stream.text_stream:
                if text:
                    yield text

    async def generate_json(self, prompt: str, schema: dict) -> str:
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(block.text for block in response.content if block.type == "text").strip()


class OpenAIBackend(LLMBackend):
    """
    OpenAI-compatible API — covers GPT, GLM, DeepSeek, Mistral, etc.

    Any provider that speaks /v1/chat/completions works here:
      - OpenAI:      https://api.openai.com/v1
      - OpenRouter:  https://openrouter.ai/api/v1
      - DeepSeek:    https://api.deepseek.com/v1
      - Local vLLM:  http://localhost:8000/v1

    Structured output varies too much between these, so JSON shape is
    enforced by the prompt.
    """

    def __init__(self, model: str, max_tokens: int = 1024, temperature: float = 0.0,
                 base_url: str | None = None, api_key: str | None = None):
        import openai

        if api_key is None:
            if base_url and "openrouter" in base_url:
                api_key = os.environ.get("OPENROUTER_API_KEY")
            elif base_url and "deepseek" in base_url:
                api_key = os.environ.get("DEEPSEEK_API_KEY")
            if not api_key:
                api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ConfigurationError(
                "No API key found. Set one of:\n"
                "  export OPENAI_API_KEY='...'\n"
                "  export OPENROUTER_API_KEY='...'\n"
                "  export DEEPSEEK_API_KEY='...'"
            )

        kwargs = {"api_key": api_key}
        if base_url:
            kwargs["base_url"] = base_url
        self.client = openai.AsyncOpenAI(**kwargs)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._base_url = base_url or "openai"

    @property
    def name(self) -> str:
        for keyword in ["openrouter", "deepseek", "together"]:
            if keyword in self._base_url:
                return keyword
        return "openai"

    def _messages(self, prompt: str) -> list[dict]:
        return [{"role": "user", "content": prompt}]

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        response_stream = await self.client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            messages=self._messages(prompt),
            stream=True,
        )
        async for chunk in response_stream:
            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content

    async def generate_json(self, prompt: str, schema: dict) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            messages=self._messages(prompt),
        )
        return (response.choices[0].message.content or "").strip()


class OllamaBackend(OpenAIBackend):
    """
    Ollama for local models — no API key, no cost, full privacy.

    ollama pull llama3.1
    Then it just works at localhost:11434.
    """

    def __init__(self, model: str, max_tokens: int = 1024, temperature: float = 0.0,
                 host: str = "http://localhost:11434"):
        super().__init__(
            model, max_tokens, temperature,
            base_url=f"{host}/v1",
            api_key="ollama",  # Ollama ignores this but SDK requires it
        )

    @property
    def name(self) -> str:
        return "ollama"


# ==================== PRESETS ====================

PRESETS = {
    # --- Google ---
    "gemini":       {"provider": "gemini",  "model": "gemini-2.5-flash"},
    "gemini-pro":   {"provider": "gemini",  "model": "gemini-2.5-pro"},

    # --- Anthropic ---
    "claude":       {"provider": "claude",  "model": "claude-sonnet-4-20250514"},
    "claude-haiku": {"provider": "claude",  "model": "claude-haiku-4-5-20251001"},

    # --- OpenAI-compatible ---
    "gpt4o-mini":   {"provider": "openai",  "model": "gpt-4o-mini"},
    "deepseek":     {"provider": "openai",  "model": "deepseek-chat",
                     "base_url": "https://api.deepseek.com/v1"},

    # --- Local (Ollama) ---
    "llama3":       {"provider": "ollama",  "model": "llama3.1"},
    "qwen":         {"provider": "ollama",  "model": "qwen2.5"},
}


def list_presets() -> str:
    """List available model presets."""
    lines = ["Available presets:"]
    for name, cfg in PRESETS.items():
        provider = cfg["provider"]
        model = cfg["model"]
        url = cfg.get("base_url", "")
        extra = f"  ({url})" if url else ""
        lines.append(f"  {name:<16} {provider:<8} {model}{extra}")
    return "\n".join(lines)


def create_backend(
    preset: str | None = None,
    provider: str = "gemini",
    model: str = "gemini-2.5-flash",
    base_url: str | None = None,
    api_key: str | None = None,
) -> LLMBackend:
    """Factory — build the backend for a preset, or for an explicit provider/model."""
    if preset:
        if preset not in PRESETS:
            raise ConfigurationError(f"Unknown preset: {preset!r}\n{list_presets()}")
        cfg = PRESETS[preset]
        provider = cfg["provider"]
        model = cfg["model"]
        base_url = cfg.get("base_url", base_url)

    if provider == "gemini":
        backend = GeminiBackend(model, api_key=api_key)
    elif provider == "claude":
        backend = ClaudeBackend(model, api_key=api_key)
    elif provider == "openai":
        backend = OpenAIBackend(model, base_url=base_url, api_key=api_key)
    elif provider == "ollama":
        backend = OllamaBackend(model)
    else:
        raise ConfigurationError(f"Unknown provider: {provider!r}. Use: gemini, claude, openai, ollama")

    logger.info("Model backend ready: %s/%s", backend.name, model)
    return backend


# ==================== GENERATION ====================

async def generate_answer_stream(
    backend: LLMBackend,
    query: str,
    context: str,
    on_chunk: Callable[[str], None],
) -> None:
    """
    Stream an answer, handing each fragment to on_chunk as it arrives.

    on_chunk runs before the next fragment is requested, so fragments are
    delivered strictly in arrival order. Any failure becomes a
    GenerationError; no retry, and whatever was already delivered stays
    delivered.
    """
    prompt = build_answer_prompt(query, context)
    try:
        async for fragment in backend.stream(prompt):
            if fragment:
                on_chunk(fragment)
    except Exception as e:
        logger.error("Error generating content from %s/%s", backend.name, backend.model, exc_info=True)
        raise GenerationError("Failed to get response from the model.") from e


def _strip_code_fence(text: str) -> str:
    """Drop a surrounding ```json ... ``` fence, which prompt-only backends often add."""
    match = CODE_FENCE_RE.match(text)
    return match.group(1) if match else text


def parse_questions(text: str) -> list[str]:
    """Parse a JSON array of questions. Anything else -> []."""
    try:
        questions = json.loads(_strip_code_fence(text.strip()) if text else text)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Suggestion response was not valid JSON: %r", text[:200] if text else text)
        return []
    if not isinstance(questions, list):
        return []
    return [q for q in questions if isinstance(q, str) and q.strip()][:MAX_SUGGESTIONS]


async def generate_sample_questions(backend: LLMBackend, context: str) -> list[str]:
    """
    Ask the model for up to 3 questions about the context.

    Bad JSON is not an error (returns []). Transport errors propagate;
    the session decides to ignore them.
    """
    text = await backend.generate_json(build_suggestion_prompt(context), QUESTIONS_SCHEMA)
    return parse_questions(text)
