import asyncio

import fitz
import pytest

from docqa.generator import LLMBackend


class FakeBackend(LLMBackend):
    """In-memory model: replays canned fragments and JSON, records prompts."""

    model = "fake-model"

    def __init__(self, fragments=None, json_text='["Q1?", "Q2?", "Q3?"]',
                 stream_error=None, json_error=None, gate=None, json_gate=None):
        self.fragments = list(fragments or [])
        self.json_text = json_text
        self.stream_error = stream_error
        self.json_error = json_error
        self.gate = gate
        self.json_gate = json_gate
        self.stream_prompts = []
        self.json_prompts = []

    @property
    def name(self) -> str:
        return "fake"

    async def stream(self, prompt):
        self.stream_prompts.append(prompt)
        for fragment in self.fragments:
            await asyncio.sleep(0)
            yield fragment
            if self.gate is not None:
                await self.gate.wait()
        if self.stream_error is not None:
            raise self.stream_error

    async def generate_json(self, prompt, schema):
        self.json_prompts.append(prompt)
        if self.json_gate is not None:
            await self.json_gate.wait()
        if self.json_error is not None:
            raise self.json_error
        return self.json_text


def build_pdf(pages: list[str]) -> bytes:
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def make_pdf():
    return build_pdf


@pytest.fixture
def backend():
    return FakeBackend(fragments=["Hel", "lo!"])
