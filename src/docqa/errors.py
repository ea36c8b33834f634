"""
errors.py — What can go wrong, and who deals with it
=====================================================

  ConfigurationError  missing API key, bad env value  -> fatal, fix and restart
  UploadError         not a PDF, or PDF won't parse    -> shown on upload, retry
  GenerationError     model/network failure mid-answer -> becomes a chat message

Suggestion failures don't get a class of their own. They're logged and
dropped; suggestions are a nice-to-have.
"""


class DocQAError(Exception):
    """Base class for everything docqa raises on purpose."""


class ConfigurationError(DocQAError, ValueError):
    """Missing credential or invalid setting. Not recoverable in-session."""


class UploadError(DocQAError):
    """The uploaded file was rejected or could not be parsed."""


class GenerationError(DocQAError):
    """The model call failed while producing an answer."""
