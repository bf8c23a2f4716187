"""Strategies for handling a missing segment context."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)

RUNTIME_ERROR = "RUNTIME_ERROR"
LOG_ERROR = "LOG_ERROR"
IGNORE_ERROR = "IGNORE_ERROR"


class ContextMissingError(RuntimeError):
    """Raised when a segment context is missing under the runtime error strategy."""

    def __init__(self, value: Any) -> None:
        super().__init__(str(value))
        self.value = value


class ContextMissingStrategy(ABC):
    """Decides what happens when a segment context is missing."""

    @abstractmethod
    def context_missing(self, value: Any) -> None:
        """Handle a missing context described by ``value``."""


class RuntimeErrorStrategy(ContextMissingStrategy):
    """Raise an error when the context is missing."""

    def context_missing(self, value: Any) -> None:
        raise ContextMissingError(value)


class LogErrorStrategy(ContextMissingStrategy):
    """Log an error when the context is missing."""

    def context_missing(self, value: Any) -> None:
        logger.error("Suppressing AWS X-Ray context missing panic: %s", value)


class IgnoreErrorStrategy(ContextMissingStrategy):
    """Do nothing when the context is missing."""

    def context_missing(self, value: Any) -> None:
        pass