"""
docqa
=====
Ask questions about a PDF, get answers streamed from an LLM.

Modules:
  1. pdf_parser  — PDF upload check and text extraction
  2. chunkers    — fixed-size overlapping chunks
  3. sparse      — keyword-overlap retrieval
  4. generator   — streaming answers + suggested questions, any provider
  5. session     — the chat state machine tying it together
  6. cli         — terminal front end

Usage:
  uv run docqa-chat paper.pdf        # chat about a PDF
  uv run docqa-chat --sample         # try it without a PDF
"""
