"""Call provider interface."""

from abc import ABC, abstractmethod
from typing import Optional


class CallProvider(ABC):
    """Places outbound calls; reports progress through status callbacks."""

    from_number: str

    @abstractmethod
    async def place_call(
        self,
        to: str,
        instructions_url: str,
        status_callback_url: str,
        timeout_seconds: int,
        from_: Optional[str] = None,
    ) -> str:
        """Start a call and return the provider's call id.

        Raises ``CallProviderError`` when the provider refuses the request.
        """

    @abstractmethod
    async def hangup_call(self, provider_call_id: str, ringing: bool = False) -> bool:
        """Best-effort termination of a call that is still live."""

    async def check_connection(self) -> bool:
        """Check the provider is reachable with the configured credentials."""
        return True
