"""Payment gateway clients used by reconciliation."""

import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import List, Optional, Dict, Any

import httpx
from pydantic import ValidationError

from ..config import Settings, get_settings, DEFAULT_PAYOS_API_URL
from ..database.models import PaymentStatus, utcnow
from ..errors import GatewayAuthError, GatewayError, GatewayUnavailable
from .models import GatewayStatus, GatewayTransaction, TransactionListing

logger = logging.getLogger(__name__)


def map_gateway_status(gateway_status: str) -> str:
    """Map a PayOS order status to the ledger vocabulary.

    Args:
        gateway_status: Status string reported by the gateway.

    Returns:
        Ledger status string.
    """
    status_mapping = {
        GatewayStatus.PAID.value: PaymentStatus.COMPLETED.value,
        GatewayStatus.CANCELLED.value: PaymentStatus.CANCELLED.value,
        GatewayStatus.PROCESSING.value: PaymentStatus.PENDING.value,
        GatewayStatus.PENDING.value: PaymentStatus.PENDING.value,
    }
    return status_mapping.get((gateway_status or "").upper(), PaymentStatus.PENDING.value)


class PaymentGatewayBase(ABC):
    """Read-only view of the external payment gateway."""

    @abstractmethod
    async def get_order_status(self, order_code: str) -> Optional[GatewayTransaction]:
        """Fetch the current state of one order.

        Args:
            order_code: Order code shared with the ledger.

        Returns:
            GatewayTransaction if the gateway knows the order, None otherwise.

        Raises:
            GatewayUnavailable: On network failure, timeout or a 5xx.
            GatewayAuthError: If the gateway rejected our credentials.
        """
        raise NotImplementedError

    @abstractmethod
    async def list_transactions(self, since_hours: int) -> TransactionListing:
        """Fetch every order the gateway processed in the trailing window.

        Args:
            since_hours: Size of the trailing window in hours.

        Returns:
            TransactionListing; ``complete`` is False when only part of the
            window could be fetched.

        Raises:
            GatewayError: If nothing at all could be fetched.
        """
        raise NotImplementedError


class PayOSClient(PaymentGatewayBase):
    """PayOS merchant API client."""

    ORDER_PATH = "/v2/payment-requests/{order_code}"
    LIST_PATH = "/v2/payment-requests"

    SUCCESS_CODE = "00"
    NOT_FOUND_CODES = frozenset(["101"])

    PAGE_SIZE = 100
    MAX_PAGES = 50

    def __init__(
        self,
        client_id: str,
        api_key: str,
        api_url: str = DEFAULT_PAYOS_API_URL,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the PayOS client.

        Args:
            client_id: PayOS client id (x-client-id header).
            api_key: PayOS API key (x-api-key header).
            api_url: Base URL of the merchant API.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport, used by tests.

        Raises:
            ValueError: If credentials are missing.
        """
        if not client_id or not api_key:
            raise ValueError("PayOS client id and API key are required")
        self._client_id = client_id
        self._api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "PayOSClient":
        return cls(
            client_id=settings.payos_client_id,
            api_key=settings.payos_api_key,
            api_url=settings.payos_api_url,
            timeout=settings.payos_timeout_seconds,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "x-client-id": self._client_id,
            "x-api-key": self._api_key,
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers=self._headers(),
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )

    async def _request(
        self,
        client: httpx.AsyncClient,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Optional[Any]:
        """GET a PayOS endpoint and unwrap its envelope.

        Returns:
            The envelope's ``data`` member, or None when the resource does not exist.
        """
        try:
            response = await client.get(path, params=params)
        except httpx.TimeoutException as e:
            logger.warning(f"PayOS request to {path} timed out after {self.timeout}s")
            raise GatewayUnavailable(f"PayOS request timed out: {path}") from e
        except httpx.HTTPError as e:
            logger.warning(f"PayOS request to {path} failed: {type(e).__name__}")
            raise GatewayUnavailable(f"Failed to connect to PayOS: {path}") from e

        if response.status_code in (401, 403):
            logger.error("PayOS authentication failed; check PAYOS_CLIENT_ID / PAYOS_API_KEY")
            raise GatewayAuthError("PayOS rejected the client credentials")
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning(f"PayOS returned HTTP {response.status_code} for {path}")
            logger.debug(f"PayOS error body: {response.text}")
            raise GatewayUnavailable(f"PayOS returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise GatewayUnavailable("PayOS returned a non-JSON body") from e

        if not isinstance(body, dict):
            raise GatewayUnavailable("PayOS returned an unexpected envelope")

        code = str(body.get("code", ""))
        # Older responses signal success with error == 0
        if code == self.SUCCESS_CODE or body.get("error") == 0:
            return body.get("data")
        if code in self.NOT_FOUND_CODES:
            return None

        logger.warning(f"PayOS error code {code} for {path}: {body.get('desc')}")
        raise GatewayUnavailable(f"PayOS error code {code}")

    async def get_order_status(self, order_code: str) -> Optional[GatewayTransaction]:
        """Fetch one order from PayOS by order code."""
        path = self.ORDER_PATH.format(order_code=order_code)
        async with self._client() as client:
            data = await self._request(client, path)

        if not data:
            logger.info(f"PayOS has no order {order_code}")
            return None

        try:
            return GatewayTransaction.model_validate(data)
        except ValidationError as e:
            raise GatewayUnavailable(
                f"Malformed PayOS order payload for {order_code}", order_code=str(order_code)
            ) from e

    @staticmethod
    def _page_items(data: Any) -> List[Dict[str, Any]]:
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            return data.get("orders") or data.get("items") or []
        return []

    async def list_transactions(self, since_hours: int) -> TransactionListing:
        """Fetch PayOS orders created inside the trailing window, page by page.

        A failure on the first page is a total failure and is raised. Any gateway
        failure on a later page, authentication included, ends the walk and
        returns what was fetched so far with ``complete=False``.
        """
        end_time = utcnow()
        start_time = end_time - timedelta(hours=since_hours)
        listing = TransactionListing()
        transactions: List[GatewayTransaction] = []

        logger.info(
            f"Fetching PayOS transactions from {start_time.isoformat()} "
            f"to {end_time.isoformat()}"
        )

        async with self._client() as client:
            for page in range(1, self.MAX_PAGES + 1):
                params = {
                    "page": page,
                    "pageSize": self.PAGE_SIZE,
                    "fromDate": start_time.isoformat(),
                    "toDate": end_time.isoformat(),
                }
                try:
                    data = await self._request(client, self.LIST_PATH, params=params)
                except GatewayError as e:
                    if page == 1:
                        raise
                    logger.warning(f"PayOS listing stopped at page {page}: {e}")
                    listing.complete = False
                    listing.error_message = str(e)
                    break

                items = self._page_items(data)
                listing.pages_fetched = page

                for item in items:
                    try:
                        txn = GatewayTransaction.model_validate(item)
                    except ValidationError:
                        logger.warning(f"Skipping malformed PayOS order on page {page}")
                        listing.complete = False
                        continue
                    # The window is enforced here as well as in the request
                    if txn.created_at is not None and txn.created_at < start_time:
                        continue
                    transactions.append(txn)

                if len(items) < self.PAGE_SIZE:
                    break
            else:
                logger.warning(f"PayOS listing truncated after {self.MAX_PAGES} pages")
                listing.complete = False

        listing.transactions = transactions
        logger.info(
            f"Fetched {len(transactions)} PayOS transactions "
            f"({'complete' if listing.complete else 'partial'})"
        )
        return listing


def get_payment_gateway(
    provider: str = "payos",
    settings: Optional[Settings] = None,
) -> PaymentGatewayBase:
    """Factory function to get the gateway client for a provider.

    Args:
        provider: Gateway provider name.
        settings: Optional settings. Defaults to the process settings.

    Returns:
        PaymentGatewayBase implementation for the provider.

    Raises:
        ValueError: If the provider is not supported.
    """
    gateways = {
        "payos": PayOSClient,
    }

    gateway_class = gateways.get(provider.lower())
    if not gateway_class:
        raise ValueError(f"Unsupported payment gateway: {provider}")

    return gateway_class.from_settings(settings or get_settings())
