import asyncio

import pytest

from docqa.config import Settings
from docqa.pdf_parser import UploadedFile
from docqa.session import (
    GENERATION_ERROR_MESSAGE,
    SAMPLE_CHUNKS,
    SAMPLE_NAME,
    UPLOAD_ERROR_MESSAGE,
    AnswerTurn,
    ChatMessage,
    ChatSession,
    Role,
    SessionState,
)

from conftest import FakeBackend


def pdf_upload(make_pdf, pages, name="doc.pdf"):
    return UploadedFile(name, make_pdf(pages), "application/pdf")


async def settle(condition, rounds=50):
    """Let the loop run until condition() holds."""
    for _ in range(rounds):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


class TestLoading:
    """Upload and sample transitions"""

    def test_upload_pdf(self, make_pdf, backend):
        session = ChatSession(backend, Settings(chunk_size=10, chunk_overlap=2))

        async def scenario():
            ok = await session.upload(pdf_upload(make_pdf, ["The quick brown fox jumps"], "fox.pdf"))
            await session.wait_for_suggestions()
            return ok

        assert asyncio.run(scenario())
        assert session.state == SessionState.READY
        assert session.document.name == "fox.pdf"
        assert session.document.chunks[0].text == "The quick "
        assert [m.role for m in session.messages] == [Role.SYSTEM]
        assert '"fox.pdf"' in session.messages[0].content
        assert session.suggestions == ["Q1?", "Q2?", "Q3?"]
        assert session.error == ""

    def test_non_pdf_upload_leaves_session_empty(self, backend):
        session = ChatSession(backend)
        upload = UploadedFile("notes.txt", b"plain text", "text/plain")

        assert not asyncio.run(session.upload(upload))
        assert session.state == SessionState.EMPTY
        assert session.document is None
        assert session.error == UPLOAD_ERROR_MESSAGE
        assert session.suggestions == []
        assert session.messages == []

    def test_broken_pdf_keeps_previous_document(self, backend):
        session = ChatSession(backend)

        async def scenario():
            await session.load_sample()
            await session.wait_for_suggestions()
            return await session.upload(UploadedFile("bad.pdf", b"%PDF-garbage", "application/pdf"))

        assert not asyncio.run(scenario())
        assert session.state == SessionState.READY
        assert session.document.name == SAMPLE_NAME
        assert session.error == UPLOAD_ERROR_MESSAGE

    def test_sample(self, backend):
        session = ChatSession(backend)

        async def scenario():
            await session.load_sample()
            await session.wait_for_suggestions()

        asyncio.run(scenario())
        assert session.document.name == SAMPLE_NAME
        assert [c.text for c in session.document.chunks] == SAMPLE_CHUNKS
        # suggestion context is the first five chunks
        prompt = backend.json_prompts[0]
        assert SAMPLE_CHUNKS[4] in prompt
        assert SAMPLE_CHUNKS[5] not in prompt

    def test_new_upload_replaces_document(self, make_pdf, backend):
        session = ChatSession(backend)

        async def scenario():
            await session.load_sample()
            await session.ask("What is Gemini?")
            await session.upload(pdf_upload(make_pdf, ["Other content"], "other.pdf"))

        asyncio.run(scenario())
        assert session.document.name == "other.pdf"
        assert len(session.messages) == 1

    def test_unexpected_error_restores_state(self, make_pdf, backend, monkeypatch):
        session = ChatSession(backend)

        def explode(upload):
            raise RuntimeError("parser crashed")

        monkeypatch.setattr("docqa.session.extract_text", explode)
        with pytest.raises(RuntimeError):
            asyncio.run(session.upload(pdf_upload(make_pdf, ["Anything"])))

        assert session.state == SessionState.EMPTY
        assert not session.busy
        assert session.status == ""
        assert asyncio.run(session.load_sample())


class TestSuggestions:
    """Background suggestion generation"""

    def test_malformed_json_is_silent(self):
        backend = FakeBackend(json_text="not json [")
        session = ChatSession(backend)

        async def scenario():
            await session.load_sample()
            await session.wait_for_suggestions()

        asyncio.run(scenario())
        assert session.suggestions == []
        assert session.error == ""
        assert session.state == SessionState.READY

    def test_transport_failure_is_silent(self):
        backend = FakeBackend(json_error=ConnectionError("down"))
        session = ChatSession(backend)

        async def scenario():
            await session.load_sample()
            await session.wait_for_suggestions()

        asyncio.run(scenario())
        assert session.suggestions == []
        assert session.error == ""
        assert session.state == SessionState.READY

    def test_late_suggestions_for_replaced_document_are_dropped(self):
        async def scenario():
            gate = asyncio.Event()
            backend = FakeBackend(json_text='["Stale?"]', json_gate=gate)
            session = ChatSession(backend)

            await session.load_sample()
            session.reset()
            gate.set()
            await asyncio.sleep(0.01)
            return session

        session = asyncio.run(scenario())
        assert session.suggestions == []
        assert session.state == SessionState.EMPTY

    def test_late_suggestions_for_previous_upload_are_dropped(self, make_pdf):
        """Sample suggestions land while a new PDF is processing; the new one's fail"""

        class SlowThenBroken(FakeBackend):
            async def generate_json(self, prompt, schema):
                self.json_prompts.append(prompt)
                if len(self.json_prompts) == 1:
                    await self.json_gate.wait()
                    return '["Stale sample question?"]'
                raise ConnectionError("down")

        async def scenario():
            backend = SlowThenBroken(json_gate=asyncio.Event())
            session = ChatSession(backend)

            await session.load_sample()
            upload = asyncio.create_task(session.upload(pdf_upload(make_pdf, ["Other content"], "other.pdf")))
            await settle(lambda: session.state == SessionState.PROCESSING)
            backend.json_gate.set()
            for _ in range(5):
                await asyncio.sleep(0)
            ok = await upload
            await session.wait_for_suggestions()
            return session, ok

        session, ok = asyncio.run(scenario())
        assert ok
        assert session.document.name == "other.pdf"
        assert session.state == SessionState.READY
        assert session.suggestions == []

    def test_late_suggestions_after_first_question_are_dropped(self):
        async def scenario():
            gate = asyncio.Event()
            backend = FakeBackend(fragments=["ok"], json_gate=gate)
            session = ChatSession(backend)

            await session.load_sample()
            await session.ask("What is Gemini?")
            gate.set()
            await session.wait_for_suggestions()
            return session

        session = asyncio.run(scenario())
        assert session.suggestions == []


class TestAsk:
    """Retrieval + streamed answer"""

    def test_stream_builds_model_message(self, backend):
        session = ChatSession(backend)

        async def scenario():
            await session.load_sample()
            return await session.ask("What is Gemini Pro?")

        assert asyncio.run(scenario())
        assert session.state == SessionState.READY
        assert session.status == ""
        last = session.messages[-1]
        assert last.role == Role.MODEL
        assert last.content == "Hello!"
        assert [m.role for m in session.messages] == [Role.SYSTEM, Role.USER, Role.MODEL]
        assert session.messages[1].content == "What is Gemini Pro?"

    def test_context_comes_from_ranked_chunks(self, backend):
        session = ChatSession(backend, Settings(top_k=1))

        async def scenario():
            await session.load_sample()
            await session.ask("context window")

        asyncio.run(scenario())
        prompt = backend.stream_prompts[0]
        assert SAMPLE_CHUNKS[2] in prompt
        assert SAMPLE_CHUNKS[0] not in prompt

    def test_fragments_forwarded_to_listener(self, backend):
        seen = []
        session = ChatSession(backend, on_fragment=seen.append)

        async def scenario():
            await session.load_sample()
            await session.ask("hi there")

        asyncio.run(scenario())
        assert seen == ["Hel", "lo!"]

    def test_generation_error_replaces_placeholder(self):
        backend = FakeBackend(fragments=["par"], stream_error=RuntimeError("network"))
        session = ChatSession(backend)

        async def scenario():
            await session.load_sample()
            return await session.ask("What is Gemini?")

        assert not asyncio.run(scenario())
        assert session.state == SessionState.READY
        last = session.messages[-1]
        assert last.role == Role.SYSTEM
        assert last.content == GENERATION_ERROR_MESSAGE
        assert not any(m.role == Role.MODEL for m in session.messages)

    def test_retry_after_error(self):
        backend = FakeBackend(fragments=["x"], stream_error=RuntimeError("network"))
        session = ChatSession(backend)

        async def scenario():
            await session.load_sample()
            await session.ask("first")
            backend.stream_error = None
            return await session.ask("first")

        assert asyncio.run(scenario())
        assert session.messages[-1] == ChatMessage(Role.MODEL, "x")

    def test_ignored_without_document_or_query(self, backend):
        session = ChatSession(backend)

        async def scenario():
            no_doc = await session.ask("anything")
            await session.load_sample()
            blank = await session.ask("   ")
            return no_doc, blank

        assert asyncio.run(scenario()) == (False, False)
        assert backend.stream_prompts == []
        assert len(session.messages) == 1

    def test_busy_session_ignores_requests(self, make_pdf):
        async def scenario():
            gate = asyncio.Event()
            backend = FakeBackend(fragments=["one ", "two"], gate=gate)
            session = ChatSession(backend)
            await session.load_sample()
            await session.wait_for_suggestions()

            task = asyncio.create_task(session.ask("first question"))
            await settle(lambda: session.messages[-1].content == "one ")

            # in-flight answer is the last visible message
            assert session.state == SessionState.ANSWERING
            assert session.messages[-1].role == Role.MODEL
            assert session.busy

            assert not await session.ask("second question")
            assert not await session.load_sample()
            assert not await session.upload(pdf_upload(make_pdf, ["x"]))

            gate.set()
            assert await task
            return session, backend

        session, backend = asyncio.run(scenario())
        assert len(backend.stream_prompts) == 1
        assert [m.content for m in session.messages if m.role == Role.USER] == ["first question"]
        assert session.messages[-1].content == "one two"

    def test_suggestions_cleared_on_ask(self, backend):
        session = ChatSession(backend)

        async def scenario():
            await session.load_sample()
            await session.wait_for_suggestions()
            assert session.suggestions
            await session.ask("What is Gemini?")

        asyncio.run(scenario())
        assert session.suggestions == []

    def test_ask_suggestion_uses_its_text(self, backend):
        session = ChatSession(backend)

        async def scenario():
            await session.load_sample()
            await session.wait_for_suggestions()
            out_of_range = await session.ask_suggestion(7)
            ok = await session.ask_suggestion(1)
            return out_of_range, ok

        assert asyncio.run(scenario()) == (False, True)
        assert session.messages[1].content == "Q2?"
        assert "QUESTION: Q2?" in backend.stream_prompts[0]


class TestReset:
    """Back to EMPTY"""

    def test_reset_clears_everything(self, backend):
        session = ChatSession(backend)

        async def scenario():
            await session.load_sample()
            await session.wait_for_suggestions()
            await session.ask("What is Gemini?")
            session.reset()

        asyncio.run(scenario())
        assert session.state == SessionState.EMPTY
        assert session.document is None
        assert session.messages == []
        assert session.suggestions == []

    def test_reset_during_answer_drops_it(self):
        async def scenario():
            gate = asyncio.Event()
            backend = FakeBackend(fragments=["late"], gate=gate)
            session = ChatSession(backend)
            await session.load_sample()

            task = asyncio.create_task(session.ask("question"))
            await settle(lambda: session.state == SessionState.ANSWERING)
            session.reset()
            gate.set()
            return session, await task

        session, ok = asyncio.run(scenario())
        assert not ok
        assert session.state == SessionState.EMPTY
        assert session.messages == []


class TestAnswerTurn:
    """Owned buffer for the streaming message"""

    def test_accumulates_until_closed(self):
        turn = AnswerTurn()
        turn.append("Hel")
        turn.append("lo!")
        message = turn.close()
        assert message.role == Role.MODEL
        assert message.content == "Hello!"

    def test_closed_turn_rejects_appends(self):
        turn = AnswerTurn()
        turn.close()
        with pytest.raises(RuntimeError):
            turn.append("more")
