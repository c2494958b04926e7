"""Base reporter interface."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from testgenr.models import GenerationResult


class Reporter(ABC):
    """Abstract base class for generation progress reporters."""

    @abstractmethod
    def on_generation_start(self, issue_key: str) -> None:
        """Called when generation begins for an issue."""
        pass

    @abstractmethod
    def on_generation_skipped(self, issue_key: Optional[str], reason: str) -> None:
        """Called when an event does not lead to generation."""
        pass

    @abstractmethod
    def on_generation_complete(self, result: "GenerationResult") -> None:
        """Called when generation for an issue finishes or fails."""
        pass

    @abstractmethod
    def on_run_complete(self, results: list["GenerationResult"]) -> None:
        """Called when every event has been handled."""
        pass
