"""Domain Gateway Interfaces"""
from abc import ABC, abstractmethod

from domain.enums import ChannelMode
from domain.value_objects import GatewayPushResult


class PaymentGateway(ABC):
    """Mobile-money push gateway"""

    @abstractmethod
    async def request_access_token(self) -> str:
        """Fetch an OAuth access token from the provider"""
        pass

    @abstractmethod
    async def submit_push(
        self,
        amount: int,
        phone_number: str,
        channel_number: str,
        channel_mode: ChannelMode,
        account_reference: str,
        transaction_desc: str
    ) -> GatewayPushResult:
        """Ask the payer's phone to authorize a charge.

        Raises GatewayError on failure and GatewayTimeout on timeout.
        """
        pass
