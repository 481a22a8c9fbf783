"""Prognostic field storage collaborator."""

from .store import FieldStore

__all__ = ['FieldStore']
