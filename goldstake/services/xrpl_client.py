"""
XRPL client service for interacting with the XRP Ledger.
Provides methods for subscribing to payments, submitting transfers, querying
trust lines and paging through account history.
"""

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from xrpl.asyncio.clients import AsyncWebsocketClient
from xrpl.asyncio.transaction import XRPLReliableSubmissionException, submit_and_wait
from xrpl.models.amounts import IssuedCurrencyAmount
from xrpl.models.requests import AccountLines, AccountTx, Subscribe
from xrpl.models.transactions import Payment
from xrpl.utils import drops_to_xrp, ripple_time_to_datetime
from xrpl.wallet import Wallet
import structlog

from goldstake.core.config import LedgerConfig
from goldstake.core.exceptions import LedgerError, LedgerConnectionError
from goldstake.utils.amounts import format_amount, truncate_amount
from goldstake.utils.clock import to_naive_utc


logger = structlog.get_logger(__name__)

HISTORY_PAGE_LIMIT = 20
RESULT_CODE_PATTERN = re.compile(r"\bte[cflmrs][A-Z_]+\b")


def encode_currency(code: str) -> str:
    """Return the wire form of a currency code.

    Standard three-letter codes go as-is, longer codes are hex-encoded and
    padded to 40 characters.
    """
    if len(code) <= 3:
        return code
    return code.encode("ascii").hex().upper().ljust(40, "0")


def decode_currency(code: str) -> str:
    """Inverse of ``encode_currency``."""
    if len(code) != 40:
        return code
    try:
        return bytes.fromhex(code).rstrip(b"\x00").decode("ascii")
    except ValueError:
        return code


@dataclass
class PaymentEvent:
    """A ledger transaction touching a watched address."""
    hash: str
    transaction_type: str
    source_account: str
    destination: Optional[str]
    currency: str
    issuer: Optional[str]
    amount: Decimal
    date: Optional[datetime]
    validated: bool

    @property
    def is_payment(self) -> bool:
        return self.transaction_type == "Payment"


@dataclass
class TransferResult:
    """Outcome of an outbound transfer after the finality wait."""
    success: bool
    hash: Optional[str] = None
    failure_code: Optional[str] = None


def _parse_amount(amount: Any) -> Tuple[str, Optional[str], Decimal]:
    if isinstance(amount, dict):
        return (
            decode_currency(amount.get("currency", "")),
            amount.get("issuer"),
            truncate_amount(amount.get("value", "0")),
        )
    if amount is None:
        return "", None, Decimal("0")
    return "XRP", None, truncate_amount(drops_to_xrp(str(amount)))


def parse_transaction(entry: Dict[str, Any]) -> Optional[PaymentEvent]:
    """
    Build a ``PaymentEvent`` from a stream message or an ``account_tx`` entry.

    Handles both API v1 (``transaction``/``tx``) and API v2 (``tx_json``)
    layouts. The delivered amount from the metadata wins over the requested
    amount so partial payments are credited for what actually arrived.
    """
    tx = entry.get("tx_json") or entry.get("transaction") or entry.get("tx")
    if not tx:
        return None

    tx_hash = entry.get("hash") or tx.get("hash")
    if not tx_hash:
        return None

    meta = entry.get("meta") or entry.get("metaData") or {}
    amount = None
    if isinstance(meta, dict):
        amount = meta.get("delivered_amount")
        if amount == "unavailable":
            amount = None
    if amount is None:
        amount = tx.get("DeliverMax", tx.get("Amount"))

    currency, issuer, value = _parse_amount(amount)

    ledger_date = tx.get("date")
    date = to_naive_utc(ripple_time_to_datetime(ledger_date)) if ledger_date is not None else None

    return PaymentEvent(
        hash=tx_hash,
        transaction_type=tx.get("TransactionType", ""),
        source_account=tx.get("Account", ""),
        destination=tx.get("Destination"),
        currency=currency,
        issuer=issuer,
        amount=value,
        date=date,
        validated=bool(entry.get("validated", False)),
    )


class LedgerClient:
    """
    Async XRPL websocket client for the bridge.

    One instance is created by the service runner and handed to every
    component that needs the ledger:
    - Subscribing to validated payments on watched addresses
    - Submitting signed transfers and waiting for finality
    - Checking trust lines
    - Paging through account history
    """

    def __init__(self, url: Optional[str] = None):
        self.url = url or LedgerConfig.get_server_url()
        self.client: Optional[AsyncWebsocketClient] = None
        self.logger = logger.bind(service="xrpl_client")
        self._connect_lock = asyncio.Lock()
        self._submit_locks: Dict[str, asyncio.Lock] = {}

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def is_connected(self) -> bool:
        return self.client is not None and self.client.is_open()

    async def connect(self) -> None:
        """Open the websocket connection, no-op when already open."""
        async with self._connect_lock:
            if self.is_connected:
                return

            self.logger.info("Connecting to XRPL", url=self.url)
            client = AsyncWebsocketClient(self.url)
            try:
                await client.open()
            except Exception as e:
                self.logger.error("Failed to connect to XRPL", url=self.url, error=str(e))
                raise LedgerConnectionError(f"Failed to connect to XRPL: {e}", {"url": self.url})

            self.client = client
            self.logger.info("XRPL connected", url=self.url)

    async def close(self) -> None:
        """Close the websocket connection."""
        if self.client is not None:
            try:
                await self.client.close()
            finally:
                self.client = None
                self.logger.info("XRPL connection closed")

    async def _ensure_connected(self) -> AsyncWebsocketClient:
        if not self.is_connected:
            self.logger.warning("XRPL client is not connected, reconnecting")
            await self.close()
            await self.connect()
        return self.client

    async def subscribe(self, addresses: List[str]) -> AsyncIterator[PaymentEvent]:
        """
        Subscribe to transactions on the given addresses.

        Yields every transaction stream message as a ``PaymentEvent``. The
        iterator ends when the connection drops; the caller reconnects.
        """
        client = await self._ensure_connected()

        response = await client.request(Subscribe(accounts=addresses))
        if not response.is_successful():
            raise LedgerError("Failed to subscribe to XRPL accounts", {"result": response.result})
        self.logger.info("Subscribed to accounts", accounts=addresses)

        async for message in client:
            if not isinstance(message, dict) or message.get("type") != "transaction":
                continue
            event = parse_transaction(message)
            if event is not None:
                yield event

    async def has_trust_line(self, account: str, currency: str, issuer: str) -> bool:
        """Check whether ``account`` holds a trust line for ``currency`` from ``issuer``."""
        client = await self._ensure_connected()
        try:
            response = await client.request(
                AccountLines(account=account, peer=issuer, ledger_index="validated")
            )
        except Exception as e:
            self.logger.error("Trust line query failed", account=account, error=str(e))
            raise LedgerError(f"Error checking trust line for {account}: {e}", {"account": account})

        if not response.is_successful():
            # actNotFound and friends mean there is no line to speak of
            self.logger.warning("Trust line query rejected", account=account, result=response.result)
            return False

        wire_code = encode_currency(currency)
        return any(
            line.get("account") == issuer and line.get("currency") in (currency, wire_code)
            for line in response.result.get("lines", [])
        )

    async def submit_transfer(
        self,
        sender_secret: str,
        destination: str,
        currency: str,
        issuer: str,
        amount: Decimal
    ) -> TransferResult:
        """
        Sign, submit and wait for a validated issued-currency payment.

        Returns a failed ``TransferResult`` carrying the ledger result code
        when the ledger rejects the payment. Transport errors propagate as
        ``LedgerError``.
        """
        wallet = Wallet.from_seed(sender_secret)
        payment = Payment(
            account=wallet.address,
            destination=destination,
            amount=IssuedCurrencyAmount(
                currency=encode_currency(currency),
                issuer=issuer,
                value=format_amount(amount),
            ),
        )

        # Submissions from one wallet are serialized so autofilled sequence
        # numbers never collide.
        lock = self._submit_locks.setdefault(wallet.address, asyncio.Lock())
        async with lock:
            client = await self._ensure_connected()
            self.logger.info(
                "Sending token",
                destination=destination,
                currency=currency,
                amount=str(amount)
            )
            try:
                response = await submit_and_wait(payment, client, wallet)
            except XRPLReliableSubmissionException as e:
                match = RESULT_CODE_PATTERN.search(str(e))
                failure_code = match.group(0) if match else str(e)
                self.logger.error("Transfer rejected by the ledger", destination=destination, code=failure_code)
                return TransferResult(success=False, failure_code=failure_code)
            except Exception as e:
                self.logger.error("Transfer submission failed", destination=destination, error=str(e))
                raise LedgerError(f"Failed to send token: {e}", {"destination": destination})

        result = response.result
        tx_hash = result.get("hash") or result.get("tx_json", {}).get("hash")
        code = result.get("meta", {}).get("TransactionResult")
        if code != "tesSUCCESS":
            self.logger.error("Transfer failed", destination=destination, code=code, hash=tx_hash)
            return TransferResult(success=False, hash=tx_hash, failure_code=code or "Unknown XRPL error")

        self.logger.info("Transfer validated", destination=destination, hash=tx_hash)
        return TransferResult(success=True, hash=tx_hash)

    async def fetch_history(
        self,
        address: str,
        marker: Optional[Any] = None,
        limit: int = HISTORY_PAGE_LIMIT
    ) -> Tuple[List[PaymentEvent], Optional[Any]]:
        """
        Fetch one page of ``account_tx`` for ``address``, newest first.

        Returns:
            The parsed transactions and the marker for the next page (None when
            history is exhausted)
        """
        client = await self._ensure_connected()
        request = AccountTx(
            account=address,
            ledger_index_min=-1,
            ledger_index_max=-1,
            limit=min(limit, HISTORY_PAGE_LIMIT),
            marker=marker,
        )
        try:
            response = await client.request(request)
        except Exception as e:
            raise LedgerError(f"Failed to fetch account_tx for {address}: {e}", {"address": address})

        if not response.is_successful():
            raise LedgerError(f"Failed to fetch account_tx for {address}", {"result": response.result})

        events = []
        for entry in response.result.get("transactions", []):
            event = parse_transaction(entry)
            if event is not None:
                events.append(event)

        return events, response.result.get("marker")

