"""Core module for the hangsmart application."""

from .types import FirestoreDocument, Timestamp

__all__ = ["FirestoreDocument", "Timestamp"]
