"""Sampling requests, decisions and the strategy interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class Decision:
    """Whether to sample a request, and the name of the rule that decided it."""

    sample: bool = False
    rule: str | None = None


@dataclass
class SamplingRequest:
    """Parameters of a request used to make a sampling decision."""

    host: str = ""
    method: str = ""
    url: str = ""
    service_name: str = ""
    service_type: str = ""


class SamplingStrategy(ABC):
    """Decides whether requests are traced."""

    @abstractmethod
    def should_trace(self, request: SamplingRequest) -> Decision:
        """Return the sampling decision for ``request``."""