import asyncio
from typing import Any, AsyncIterator, Optional

from ._http import HttpClient, path_segment
from .errors import ClientValidationError
from .types import CreditBalance, CreditTransaction, CreditUsage, TransactionsPage


def _parse_transaction(data: dict[str, Any]) -> CreditTransaction:
    return CreditTransaction(
        id=data["id"],
        type=data.get("type", ""),
        amount=data.get("amount", 0),
        created_at=data.get("createdAt"),
        job_id=data.get("jobId"),
        description=data.get("description"),
    )


class CreditsAPI:
    """Namespace for credit balance and usage. Accessed via ``client.credits``."""

    def __init__(self, http: HttpClient) -> None:
        self._http = http

    async def get_balance(
        self,
        *,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> CreditBalance:
        """GET /v1/credits/balance"""
        resp = await self._http.request(
            "GET", "/v1/credits/balance", request_id=request_id, signal=signal, retryable=True
        )
        data = resp.data
        return CreditBalance(
            balance=data.get("balance", 0),
            reserved=data.get("reserved", 0),
            available=data.get("available", 0),
        )

    async def list_transactions(
        self,
        *,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> TransactionsPage:
        """GET /v1/credits/transactions — One page of the credit ledger."""
        resp = await self._http.request(
            "GET",
            "/v1/credits/transactions",
            query={"limit": limit, "offset": offset},
            request_id=request_id,
            signal=signal,
            retryable=True,
        )
        data = resp.data
        pagination = data.get("pagination") or {}
        transactions = [_parse_transaction(t) for t in data.get("transactions") or []]
        return TransactionsPage(
            transactions=transactions,
            limit=pagination.get("limit", limit or len(transactions)),
            offset=pagination.get("offset", offset or 0),
            total=pagination.get("total", len(transactions)),
        )

    async def iter_transactions(
        self,
        *,
        limit: int = 50,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[CreditTransaction]:
        """Yield every transaction, fetching ``limit`` per page."""
        offset = 0
        while True:
            page = await self.list_transactions(
                limit=limit, offset=offset, request_id=request_id, signal=signal
            )
            for tx in page.transactions:
                yield tx
            offset += len(page.transactions)
            if not page.transactions or offset >= page.total:
                break

    async def get_job_usage(
        self,
        job_id: str,
        *,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> CreditUsage:
        """GET /v1/credits/usage/{job_id}"""
        if not job_id:
            raise ClientValidationError("job_id is required")
        resp = await self._http.request(
            "GET",
            f"/v1/credits/usage/{path_segment(job_id)}",
            request_id=request_id,
            signal=signal,
            retryable=True,
        )
        data = resp.data
        return CreditUsage(
            job_id=data.get("jobId", job_id),
            credits_used=data.get("creditsUsed", 0),
            credits_net_used=data.get("creditsNetUsed", 0),
            credits_discounted=data.get("creditsDiscounted"),
            duration_ms=data.get("durationMs"),
            model_version=data.get("modelVersion"),
        )

    async def has_enough(
        self,
        credits: float,
        *,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> bool:
        balance = await self.get_balance(request_id=request_id, signal=signal)
        return balance.available >= credits

    async def get_available(
        self,
        *,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> float:
        balance = await self.get_balance(request_id=request_id, signal=signal)
        return balance.available
