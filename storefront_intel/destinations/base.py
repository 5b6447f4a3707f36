"""Destination contract — one subclass per external sink."""

from abc import ABC, abstractmethod


class BaseDestination(ABC):
    """A sink that receives normalized event payloads.

    send() returns True when the event was delivered, False when this
    destination deliberately skips it (unsupported event, missing email,
    no client id). Delivery failures raise; the dispatcher catches them.
    """

    name: str = ""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    @property
    @abstractmethod
    def enabled(self) -> bool:
        """Whether credentials for this destination are configured."""

    @abstractmethod
    async def send(self, event_name: str, payload: dict) -> bool:
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"
