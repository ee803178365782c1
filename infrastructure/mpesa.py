"""M-PESA Daraja STK Push gateway"""
import base64
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo

import httpx

from domain.enums import ChannelMode
from domain.exceptions import GatewayError, GatewayTimeout
from domain.gateways import PaymentGateway
from domain.value_objects import GatewayPushResult
from infrastructure.config import Settings

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"

# Daraja validates the password timestamp against East Africa Time
DARAJA_TIMEZONE = ZoneInfo("Africa/Nairobi")

TRANSACTION_TYPES = {
    ChannelMode.BILL: "CustomerPayBillOnline",
    ChannelMode.GOODS: "CustomerBuyGoodsOnline",
}


def stk_timestamp(now: Optional[datetime] = None) -> str:
    """Nairobi wall-clock time as YYYYMMDDHHMMSS; naive values are read as UTC"""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(DARAJA_TIMEZONE).strftime("%Y%m%d%H%M%S")


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()


class MpesaGateway(PaymentGateway):
    """Daraja client. Every call carries an explicit timeout."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport
        self._timeout = httpx.Timeout(settings.MPESA_TIMEOUT_SECONDS)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.MPESA_BASE_URL,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def request_access_token(self) -> str:
        auth = (self.settings.MPESA_CONSUMER_KEY, self.settings.MPESA_CONSUMER_SECRET)
        try:
            async with self._client() as client:
                response = await client.get(TOKEN_PATH, auth=auth)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            logger.warning("M-PESA token request timed out: %s", e)
            raise GatewayTimeout() from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("M-PESA token request failed: %s", e)
            raise GatewayError() from e

        token = data.get("access_token")
        if not token:
            logger.error("M-PESA token response missing access_token")
            raise GatewayError()
        return token

    def build_push_payload(
        self,
        amount: int,
        phone_number: str,
        channel_number: str,
        channel_mode: ChannelMode,
        account_reference: str,
        transaction_desc: str,
        timestamp: Optional[str] = None
    ) -> Dict[str, Any]:
        timestamp = timestamp or stk_timestamp()
        shortcode = self.settings.MPESA_SHORTCODE
        return {
            "BusinessShortCode": shortcode,
            "Password": stk_password(shortcode, self.settings.MPESA_PASSKEY, timestamp),
            "Timestamp": timestamp,
            "TransactionType": TRANSACTION_TYPES[channel_mode],
            "Amount": amount,
            "PartyA": phone_number,
            "PartyB": channel_number,
            "PhoneNumber": phone_number,
            "CallBackURL": self.settings.MPESA_CALLBACK_URL,
            # Daraja caps AccountReference at 12 characters
            "AccountReference": account_reference[:12],
            "TransactionDesc": transaction_desc,
        }

    async def submit_push(
        self,
        amount: int,
        phone_number: str,
        channel_number: str,
        channel_mode: ChannelMode,
        account_reference: str,
        transaction_desc: str
    ) -> GatewayPushResult:
        token = await self.request_access_token()
        payload = self.build_push_payload(
            amount, phone_number, channel_number, channel_mode, account_reference, transaction_desc
        )
        try:
            async with self._client() as client:
                response = await client.post(
                    STK_PUSH_PATH,
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
                data = response.json()
        except httpx.TimeoutException as e:
            logger.warning("STK push timed out for %s: %s", account_reference, e)
            raise GatewayTimeout() from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("STK push failed for %s: %s", account_reference, e)
            raise GatewayError() from e

        if response.is_error:
            logger.error("STK push rejected for %s (%s): %s", account_reference, response.status_code, data)
            raise GatewayError()

        return GatewayPushResult(
            checkout_request_id=data.get("CheckoutRequestID"),
            response_code=data.get("ResponseCode"),
            raw_response=data,
        )


class StubMpesaGateway(PaymentGateway):
    """
    Stand-in used when no Daraja credentials are configured.

    Returns predictable identifiers so the rest of the flow (processing state,
    callback correlation) behaves as if Safaricom responded.
    """

    def __init__(self):
        self.requests = []

    async def request_access_token(self) -> str:
        return "stub-token"

    async def submit_push(
        self,
        amount: int,
        phone_number: str,
        channel_number: str,
        channel_mode: ChannelMode,
        account_reference: str,
        transaction_desc: str
    ) -> GatewayPushResult:
        checkout_id = f"ws_CO_stub_{uuid4().hex}"
        self.requests.append({
            "amount": amount,
            "phone_number": phone_number,
            "channel_number": channel_number,
            "channel_mode": channel_mode,
            "account_reference": account_reference,
            "transaction_desc": transaction_desc,
        })
        data = {
            "MerchantRequestID": f"stub-{uuid4().hex[:12]}",
            "CheckoutRequestID": checkout_id,
            "ResponseCode": "0",
            "ResponseDescription": "Success. Request accepted for processing",
            "CustomerMessage": "Success. Request accepted for processing",
        }
        return GatewayPushResult(checkout_request_id=checkout_id, response_code="0", raw_response=data)


def build_gateway(settings: Settings) -> PaymentGateway:
    if settings.mpesa_configured:
        return MpesaGateway(settings)
    logger.info("M-PESA credentials not configured, using stub gateway")
    return StubMpesaGateway()
