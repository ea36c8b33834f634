"""
cli.py — Chat with a PDF from the terminal
===========================================

Usage:
  uv run docqa-chat paper.pdf
  uv run docqa-chat paper.pdf --model claude
  uv run docqa-chat --sample                # built-in "Gemini API FAQ"
  uv run docqa-chat --list-models

Inside the chat:
  <question>     ask about the document (answer streams as it arrives)
  1, 2, 3        ask a suggested question
  load <path>    switch to another PDF
  sample         switch to the sample document
  reset          forget the document and the conversation
  models         list model presets
  quit           leave
"""

import asyncio
import logging
import sys
from pathlib import Path

from docqa.config import load_settings
from docqa.errors import ConfigurationError
from docqa.generator import create_backend, list_presets
from docqa.pdf_parser import UploadedFile
from docqa.session import ChatSession, Role


def parse_args(argv: list[str]) -> dict:
    """
    Simple arg parser.

    Parses:
      docqa-chat [file.pdf] [--model preset] [--sample] [--list-models]
    """
    args = {
        "filepath": None,
        "model": None,  # falls back to DOCQA_MODEL
        "sample": False,
        "list_models": False,
    }

    positional = []
    i = 0
    while i < len(argv):
        if argv[i] == "--model" and i + 1 < len(argv):
            args["model"] = argv[i + 1]
            i += 2
        elif argv[i] == "--sample":
            args["sample"] = True
            i += 1
        elif argv[i] == "--list-models":
            args["list_models"] = True
            i += 1
        elif argv[i].startswith("--"):
            i += 1  # skip unknown flags
        else:
            positional.append(argv[i])
            i += 1

    if positional:
        args["filepath"] = positional[0]

    return args


def print_suggestions(session: ChatSession):
    if not session.suggestions:
        return
    print("\n  Suggested questions:")
    for i, q in enumerate(session.suggestions, 1):
        print(f"    {i}. {q}")


async def load(session: ChatSession, filepath: str | None, sample: bool = False) -> bool:
    """Load a PDF (or the sample) and show what came of it."""
    if sample:
        ok = await session.load_sample()
    else:
        path = Path(filepath)
        if not path.is_file():
            print(f"  File not found: {path}")
            return False
        print("  Processing PDF... this may take a moment.")
        ok = await session.upload(UploadedFile.from_path(path))

    if not ok:
        if session.error:
            print(f"  Error: {session.error}")
        return False

    print(f"  {session.messages[0].content}")
    print(f"  {len(session.document.chunks)} chunks")
    await session.wait_for_suggestions()
    print_suggestions(session)
    return True


async def ask(session: ChatSession, query: str):
    """Run one question and print the streamed answer."""
    print()
    ok = await session.ask(query)
    print()
    if not ok:
        last = session.messages[-1] if session.messages else None
        if last is not None and last.role == Role.SYSTEM:
            print(f"\n  {last.content}")


async def chat(session: ChatSession, args: dict):
    if args["filepath"]:
        await load(session, args["filepath"])
    elif args["sample"]:
        await load(session, None, sample=True)

    print(f"\n{'='*70}")
    print(f"  Ready! (model: {session.backend.name}/{session.backend.model})")
    print(f"  Type 'load <file.pdf>' or 'sample' to pick a document, 'quit' to stop.")
    print(f"{'='*70}")

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "\n> ")).strip()
        except (EOFError, KeyboardInterrupt):
            print("\nBye!")
            break

        if not user_input:
            continue
        command = user_input.lower()

        if command in ("quit", "exit", "q"):
            print("Bye!")
            break
        if command == "models":
            print(list_presets())
            continue
        if command == "reset":
            session.reset()
            print("  Cleared. Load a new document to continue.")
            continue
        if command == "sample":
            await load(session, None, sample=True)
            continue
        if command.startswith("load "):
            await load(session, user_input.split(None, 1)[1].strip())
            continue

        if session.document is None:
            print("  No document loaded. Use 'load <file.pdf>' or 'sample'.")
            continue

        if user_input.isdigit() and 1 <= int(user_input) <= len(session.suggestions):
            query = session.suggestions[int(user_input) - 1]
            print(f"  > {query}")
            await ask(session, query)
            continue

        await ask(session, user_input)


def main():
    """Entry point for `uv run docqa-chat`"""
    args = parse_args(sys.argv[1:])

    if args["list_models"]:
        print(list_presets())
        print("\nUsage: uv run docqa-chat paper.pdf --model <preset>")
        sys.exit(0)

    try:
        settings = load_settings()
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        backend = create_backend(preset=args["model"] or settings.model_preset)
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    session = ChatSession(
        backend,
        settings,
        on_fragment=lambda fragment: print(fragment, end="", flush=True),
    )

    print(f"\n{'='*70}")
    print(f"  DOCUMENT Q&A — ask questions about a PDF")
    print(f"{'='*70}")

    asyncio.run(chat(session, args))


if __name__ == "__main__":
    main()
