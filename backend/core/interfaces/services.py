"""Service interfaces for pluggable sync behaviour."""

from abc import ABC, abstractmethod


class Pacer(ABC):
    """Waits between upstream property fetches to stay under API quotas."""

    @abstractmethod
    async def pause(self) -> None:
        """Block until the next upstream fetch may start."""
        ...
