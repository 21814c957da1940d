from __future__ import annotations
from abc import ABC, abstractmethod
import logging
from typing import Any, Dict, Optional, TypedDict
from urllib.parse import quote

import httpx

from .errors import UpstreamError

logger = logging.getLogger(__name__)


# ----------------------------
# Payment Gateway Interface
# ----------------------------
class Customer(TypedDict):
    email: str
    name: str


class ChargeSession(TypedDict):
    payment_link: str
    tx_ref: str


class TransactionInfo(TypedDict):
    transaction_id: str
    status: str  # provider status, e.g. "successful" | "failed" | "pending"
    amount: Any
    currency: Optional[str]
    tx_ref: Optional[str]
    provider_ref: Optional[str]


class PaymentGateway(ABC):
    @abstractmethod
    async def initialize_charge(
        self, *, tx_ref: str, amount: int, currency: str, redirect_url: str,
        customer: Customer, meta: Optional[Dict[str, Any]] = None,
        customizations: Optional[Dict[str, str]] = None,
    ) -> ChargeSession: ...

    # authoritative status from the provider, never from the caller
    @abstractmethod
    async def verify_transaction(
        self, transaction_id: str
    ) -> TransactionInfo: ...

    async def aclose(self) -> None:
        return None


# ----------------------------
# Flutterwave implementation
# ----------------------------
class Flutterwave(PaymentGateway):
    """Flutterwave v3. Every call is one-shot: failures surface as
    UpstreamError and the provider's webhook redelivery is the retry."""

    def __init__(self, *, secret_key: str, client: httpx.AsyncClient,
                 base_url: str = "https://api.flutterwave.com") -> None:
        self.secret_key = secret_key
        self.client = client
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _call(self, method: str, path: str, **kw) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            r = await self.client.request(
                method, url, headers=self._headers(), **kw
            )
        except httpx.HTTPError as e:
            logger.error(f"Flutterwave {method} {path} failed: {e!r}")
            raise UpstreamError(f"payment gateway unreachable: {e}")
        if r.status_code // 100 != 2:
            logger.error(
                f"Flutterwave {method} {path} -> {r.status_code}: {r.text}"
            )
            raise UpstreamError(
                f"payment gateway returned HTTP {r.status_code}"
            )
        try:
            body = r.json()
        except ValueError:
            raise UpstreamError("payment gateway returned invalid JSON")
        if not isinstance(body, dict) or body.get("status") != "success":
            logger.error(f"Flutterwave {method} {path} not successful: {body}")
            raise UpstreamError("payment gateway reported an error")
        return body

    async def initialize_charge(
        self, *, tx_ref: str, amount: int, currency: str, redirect_url: str,
        customer: Customer, meta: Optional[Dict[str, Any]] = None,
        customizations: Optional[Dict[str, str]] = None,
    ) -> ChargeSession:
        payload: Dict[str, Any] = {
            "tx_ref": tx_ref,
            "amount": amount,
            "currency": currency,
            "redirect_url": redirect_url,
            "customer": dict(customer),
        }
        if meta:
            payload["meta"] = meta
        if customizations:
            payload["customizations"] = customizations

        body = await self._call("POST", "/v3/payments", json=payload)
        link = (body.get("data") or {}).get("link")
        if not link:
            logger.error(f"Flutterwave init for {tx_ref} without link: {body}")
            raise UpstreamError("payment gateway returned no payment link")
        return {"payment_link": link, "tx_ref": tx_ref}

    async def verify_transaction(self, transaction_id: str) -> TransactionInfo:
        body = await self._call(
            "GET",
            f"/v3/transactions/{quote(str(transaction_id), safe='')}/verify",
        )
        data = body.get("data")
        if not isinstance(data, dict):
            raise UpstreamError("payment gateway returned no transaction data")
        return {
            "transaction_id": str(data.get("id", transaction_id)),
            "status": data.get("status", ""),
            "amount": data.get("amount"),
            "currency": data.get("currency"),
            "tx_ref": data.get("tx_ref"),
            "provider_ref": data.get("flw_ref"),
        }


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentGateway):
    """In-process stand-in for local runs: charges get a local link and
    transactions are whatever was ``record``-ed."""

    def __init__(self, base_url: str = "") -> None:
        self.base_url = base_url.rstrip("/")
        self.charges: Dict[str, Dict[str, Any]] = {}
        self.transactions: Dict[str, TransactionInfo] = {}

    async def initialize_charge(
        self, *, tx_ref: str, amount: int, currency: str, redirect_url: str,
        customer: Customer, meta: Optional[Dict[str, Any]] = None,
        customizations: Optional[Dict[str, str]] = None,
    ) -> ChargeSession:
        self.charges[tx_ref] = {
            "amount": amount,
            "currency": currency,
            "redirect_url": redirect_url,
            "customer": dict(customer),
        }
        return {
            "payment_link": f"{self.base_url}/mockpay/{tx_ref}",
            "tx_ref": tx_ref,
        }

    def record(self, transaction_id: str, *, tx_ref: str, amount: Any,
               currency: str = "NGN", status: str = "successful",
               provider_ref: Optional[str] = None) -> TransactionInfo:
        info: TransactionInfo = {
            "transaction_id": transaction_id,
            "status": status,
            "amount": amount,
            "currency": currency,
            "tx_ref": tx_ref,
            "provider_ref": provider_ref or f"MOCK-{transaction_id}",
        }
        self.transactions[transaction_id] = info
        return info

    async def verify_transaction(self, transaction_id: str) -> TransactionInfo:
        info = self.transactions.get(transaction_id)
        if info is None:
            raise UpstreamError(f"unknown transaction {transaction_id}")
        return info
