"""Exception hierarchy shared across the engine and its host surfaces."""

from __future__ import annotations


class MindFlowError(Exception):
    """Base class for all MindFlow errors."""


class InvalidSignalError(MindFlowError, ValueError):
    """A raw interaction sample is malformed (NaN, negative time, ...)."""


class UnknownCategoryError(MindFlowError, ValueError):
    """A context category outside the supported set was supplied."""

    def __init__(self, category: str) -> None:
        super().__init__(f"Unknown context category: {category!r}")
        self.category = category


class EngineConfigError(MindFlowError):
    """The engine configuration table could not be loaded or is inconsistent."""
