# errors.py
"""
Error taxonomy
--------------
Only SchemaError is fatal to ingestion. Grammar input never raises;
per-document problems are collected by the normalizer instead.
"""


class CardSearchError(Exception):
    pass


class SchemaError(CardSearchError):
    """Payload shape is invalid. Carries every violation found."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__("Invalid payload: " + "; ".join(self.errors))


class DocumentError(CardSearchError):
    """One raw document could not be normalized."""


class EngineNotReadyError(CardSearchError):
    pass


class EngineBusyError(CardSearchError):
    pass


class BuildCancelled(CardSearchError):
    pass


class UnknownDocumentError(CardSearchError, KeyError):
    def __str__(self):
        return f"Unknown document id: {self.args[0]!r}" if self.args else "Unknown document id"
