"""
session.py — One user, one document, one conversation
=====================================================

The state machine behind the chat:

    EMPTY ──upload/sample──> PROCESSING ──ok──> READY ──ask──> ANSWERING
      ^                          │ fail                ^            │
      │                          └──> (previous state) └────────────┘
      └──────────── reset() from anywhere

Rules:
  - One thing at a time. While PROCESSING or ANSWERING, upload() and ask()
    return False and do nothing. No queue, no cancellation.
  - A new document replaces the old one wholesale (chunks, conversation,
    suggestions).
  - The answer being streamed lives in its own AnswerTurn buffer. It shows
    up as the last message while streaming, and only becomes a real,
    immutable ChatMessage when the stream ends. If the stream fails, the
    placeholder is replaced by a system apology instead.
  - Suggested questions are generated in a background task after every
    load. They're applied only if that document is still the active one
    and nobody has asked anything yet. Failures are logged, never shown.
  - reset() bumps an epoch counter. Work that finishes after a reset
    (an upload, a stream) sees the epoch changed and drops its result.

Everything is in memory. Nothing survives the process.

Usage:
  session = ChatSession(backend, settings)
  await session.upload(UploadedFile.from_path("paper.pdf"))
  await session.wait_for_suggestions()
  await session.ask("What is the main result?")
  print(session.messages[-1].content)
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from docqa.chunkers import Chunk, FixedSizeChunker, chunks_from_texts
from docqa.config import Settings
from docqa.errors import GenerationError, UploadError
from docqa.generator import LLMBackend, generate_answer_stream, generate_sample_questions
from docqa.pdf_parser import UploadedFile, extract_text
from docqa.sparse import build_context, get_relevant_chunks


logger = logging.getLogger(__name__)

SUGGESTION_CONTEXT_CHUNKS = 5

UPLOAD_ERROR_MESSAGE = "Failed to process PDF. Please try a different file."
GENERATION_ERROR_MESSAGE = "Sorry, I encountered an error while generating a response. Please try again."

SAMPLE_NAME = "Gemini API FAQ.pdf"
SAMPLE_CHUNKS = [
    "Gemini is a family of generative AI models, developed by Google, that allows developers to generate content and solve problems.",
    "These multimodal models can process information from text, code, images, and video. This guide provides information about Gemini models, and guidance on how to use them in your applications.",
    "The Gemini 1.0 model is available in two sizes: Gemini 1.0 Pro model - The mid-size and most capable model in the Gemini 1.0 release. It's designed to handle a wide range of tasks and is the recommended model for most use cases. Gemini 1.0 Pro has a 32K context window for text, and is available in 180+ countries and territories through the Gemini API.",
    "Safety is a key priority for Google. The models have been tested and evaluated for safety, and the API includes safety filters to block harmful content. You can learn more about the safety features in the safety guide.",
    "To use the Gemini API, you need an API key. You can create a key with one click in Google AI Studio. The API is free to use for now, with rate limits.",
    "You can interact with Gemini models using the Google AI Studio, or by making calls to the Gemini API from your applications. You can use the Gemini API with a variety of programming languages, including Python, Go, Node.js, and Dart (Flutter).",
]


# ==================== DATA STRUCTURES ====================

class SessionState(str, Enum):
    EMPTY = "empty"
    PROCESSING = "processing"
    READY = "ready"
    ANSWERING = "answering"


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str


@dataclass
class Document:
    """The active document: a display name and its chunks."""
    name: str
    chunks: list[Chunk] = field(default_factory=list)

    def __repr__(self):
        return f"Document(name={self.name!r}, chunks={len(self.chunks)})"


class AnswerTurn:
    """
    Buffer for the model message currently being streamed.

    Owned by exactly one ask() call. Fragments go in, in order; close()
    freezes it into a ChatMessage and refuses further appends.
    """

    def __init__(self):
        self._fragments: list[str] = []
        self.closed = False

    def append(self, fragment: str):
        if self.closed:
            raise RuntimeError("AnswerTurn is closed")
        self._fragments.append(fragment)

    @property
    def text(self) -> str:
        return "".join(self._fragments)

    def as_message(self) -> ChatMessage:
        return ChatMessage(role=Role.MODEL, content=self.text)

    def close(self) -> ChatMessage:
        self.closed = True
        return self.as_message()


# ==================== SESSION ====================

class ChatSession:
    """
    Orchestrates upload -> chunk -> suggest -> ask -> stream -> reset.

    The model backend is injected; the session never builds one itself.
    on_fragment (optional) sees every streamed fragment, e.g. to print it.
    """

    def __init__(
        self,
        backend: LLMBackend,
        settings: Settings | None = None,
        on_fragment: Callable[[str], None] | None = None,
    ):
        self.backend = backend
        self.settings = settings or Settings()
        self.chunker = FixedSizeChunker(self.settings.chunk_size, self.settings.chunk_overlap)
        self.on_fragment = on_fragment

        self.state = SessionState.EMPTY
        self.document: Document | None = None
        self.suggestions: list[str] = []
        self.error = ""
        self.status = ""

        self._conversation: list[ChatMessage] = []
        self._turn: AnswerTurn | None = None
        self._suggestion_task: asyncio.Task | None = None
        self._epoch = 0

    # ---------- read-only views ----------

    @property
    def busy(self) -> bool:
        return self.state in (SessionState.PROCESSING, SessionState.ANSWERING)

    @property
    def messages(self) -> list[ChatMessage]:
        """Committed conversation, plus the in-flight answer while streaming."""
        messages = list(self._conversation)
        if self._turn is not None:
            messages.append(self._turn.as_message())
        return messages

    # ---------- loading ----------

    async def upload(self, upload: UploadedFile) -> bool:
        """Load a PDF. Returns True if it became the active document."""
        if self.busy:
            logger.debug("Ignoring upload of %s: session busy (%s)", upload.name, self.state.value)
            return False

        previous = self.state
        epoch = self._begin_processing("Processing PDF... this may take a moment.")
        try:
            text = await asyncio.to_thread(extract_text, upload)
            chunks = self.chunker.chunk(text)
            if not chunks:
                raise UploadError(f"No extractable text in {upload.name!r}")
        except UploadError:
            logger.warning("Failed to process %s", upload.name, exc_info=True)
            if epoch == self._epoch:
                self.error = UPLOAD_ERROR_MESSAGE
                self.state = previous
                self.status = ""
            return False
        except Exception:
            if epoch == self._epoch:
                self.state = previous
                self.status = ""
            raise

        if epoch != self._epoch:
            logger.info("Session was reset while processing %s; dropping it", upload.name)
            return False

        self._install(
            Document(name=upload.name, chunks=chunks),
            f'Successfully processed "{upload.name}". You can now ask questions about its content.',
        )
        return True

    async def load_sample(self) -> bool:
        """Load the built-in sample document instead of a PDF."""
        if self.busy:
            return False

        epoch = self._begin_processing("Loading sample document...")
        await asyncio.sleep(0)
        if epoch != self._epoch:
            return False

        self._install(
            Document(name=SAMPLE_NAME, chunks=chunks_from_texts(SAMPLE_CHUNKS)),
            f'Successfully loaded sample "{SAMPLE_NAME}". You can now ask questions about its content.',
        )
        return True

    def _begin_processing(self, status: str) -> int:
        self.state = SessionState.PROCESSING
        self.status = status
        self.error = ""
        self.suggestions = []
        return self._epoch

    def _install(self, document: Document, greeting: str):
        self._cancel_suggestions()
        self.document = document
        self._conversation = [ChatMessage(role=Role.SYSTEM, content=greeting)]
        self._turn = None
        self.suggestions = []
        self.state = SessionState.READY
        self.status = ""
        logger.info("Active document: %r", document)
        self._suggestion_task = asyncio.create_task(self._load_suggestions(document))

    # ---------- suggestions ----------

    async def _load_suggestions(self, document: Document):
        context = build_context(get_relevant_chunks("", document.chunks, SUGGESTION_CONTEXT_CHUNKS))
        try:
            questions = await generate_sample_questions(self.backend, context)
        except Exception:
            logger.warning("Failed to generate suggestions for %s", document.name, exc_info=True)
            return

        if self.document is not document or asyncio.current_task() is not self._suggestion_task:
            logger.debug("Discarding suggestions for replaced document %s", document.name)
            return
        if self.state != SessionState.READY:
            logger.debug("Discarding suggestions: session is %s", self.state.value)
            return
        if len(self._conversation) > 1 or self._turn is not None:
            logger.debug("Discarding suggestions: conversation already started")
            return
        self.suggestions = questions

    async def wait_for_suggestions(self):
        """Block until the pending suggestion task (if any) is done."""
        task = self._suggestion_task
        if task is not None and not task.done():
            await asyncio.wait([task])

    def _cancel_suggestions(self):
        if self._suggestion_task is not None and not self._suggestion_task.done():
            self._suggestion_task.cancel()
        self._suggestion_task = None

    # ---------- asking ----------

    async def ask(self, query: str) -> bool:
        """
        Retrieve + stream an answer for one question.

        Ignored (returns False) if the query is blank, there's no document,
        or the session is busy. Otherwise returns True once a model answer
        was committed, False if it was replaced by the error message.
        """
        if not query.strip() or self.document is None or self.busy:
            return False

        epoch = self._epoch
        document = self.document
        turn = AnswerTurn()

        self._conversation.append(ChatMessage(role=Role.USER, content=query))
        self._turn = turn
        self.state = SessionState.ANSWERING
        self.status = "Finding relevant information..."
        self.error = ""
        self.suggestions = []

        def on_chunk(fragment: str):
            turn.append(fragment)
            if self.on_fragment is not None and epoch == self._epoch:
                self.on_fragment(fragment)

        try:
            relevant = get_relevant_chunks(query, document.chunks, self.settings.top_k)
            context = build_context(relevant)
            logger.info("Retrieved %d chunks (%d chars) for %r", len(relevant), len(context), query)

            self.status = "Generating answer..."
            await generate_answer_stream(self.backend, query, context, on_chunk)
        except GenerationError:
            message = ChatMessage(role=Role.SYSTEM, content=GENERATION_ERROR_MESSAGE)
        else:
            message = turn.close()
        finally:
            turn.closed = True

        if epoch != self._epoch:
            logger.info("Session was reset while answering; dropping the answer")
            return False

        self._conversation.append(message)
        self._turn = None
        self.state = SessionState.READY
        self.status = ""
        return message.role == Role.MODEL

    async def ask_suggestion(self, index: int) -> bool:
        """Ask one of the suggested questions (0-based index)."""
        if not 0 <= index < len(self.suggestions):
            return False
        return await self.ask(self.suggestions[index])

    # ---------- reset ----------

    def reset(self):
        """Back to EMPTY. Drops document, conversation, suggestions."""
        self._epoch += 1
        self._cancel_suggestions()
        self.document = None
        self._conversation = []
        self._turn = None
        self.suggestions = []
        self.error = ""
        self.status = ""
        self.state = SessionState.EMPTY
