from abc import ABC, abstractmethod


class NotificationChannel(ABC):
    @abstractmethod
    async def send(self, recipient: str, message: str, **kwargs) -> bool:
        """
        Base send method.
        Use **kwargs for channel-specific data like a subject line.
        Returns True once the provider accepted the message.
        """
