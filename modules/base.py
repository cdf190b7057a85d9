"""Base module class for karaoke modules."""
from abc import ABC, abstractmethod
from typing import Any, Dict


class Module(ABC):
    """
    Base class for long-lived karaoke components.

    Lifecycle:
    - __init__(config) - Construct with configuration, acquire nothing
    - start() - Acquire resources / begin processing; False if unavailable
    - stop() - Release everything; safe to call repeatedly

    Modules are also context managers, so standalone CLIs and tests can
    write `with LyricsModule() as lyrics:` and always get stop().
    """

    def __init__(self):
        self._started = False

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def is_started(self) -> bool:
        return self._started

    @abstractmethod
    def start(self) -> bool:
        """Start the module. Returns True on success."""

    @abstractmethod
    def stop(self) -> None:
        """Stop the module and clean up resources."""

    def __enter__(self) -> 'Module':
        if not self.start():
            raise RuntimeError(f"{self.name} failed to start")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def get_status(self) -> Dict[str, Any]:
        """Get module status for monitoring."""
        return {"module": self.name, "started": self._started}
