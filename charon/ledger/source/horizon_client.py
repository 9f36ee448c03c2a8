import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from async_timeout import timeout
from stellar_sdk import Account, ServerAsync
from stellar_sdk.client.aiohttp_client import AiohttpClient
from stellar_sdk.exceptions import ConnectionError as HorizonConnectionError

from charon.core.utils.async_retry import async_retry
from charon.exceptions import LedgerOperationError
from charon.logger import CharonLogger

PAGE_LIMIT = 200


class SourceLedgerClient:
    """
    Read access and submission against a Horizon server. Every failure surfaces as a LedgerOperationError;
    connection errors and timeouts are retried here, never by the bridge protocol.
    """

    _logger: Optional[CharonLogger] = None

    @classmethod
    def logger(cls) -> CharonLogger:
        if cls._logger is None:
            cls._logger = logging.getLogger(__name__)
        return cls._logger

    def __init__(self,
                 horizon_url: str,
                 retry_count: int = 3,
                 retry_interval: float = 0.5,
                 request_timeout: float = 10.0,
                 server: Optional[ServerAsync] = None):
        self._horizon_url = horizon_url
        self._server = server
        self._request_timeout = request_timeout
        self._retrying_request = async_retry(retry_count=retry_count,
                                             exception_types=[HorizonConnectionError, asyncio.TimeoutError],
                                             logger=self.logger(),
                                             retry_interval=retry_interval)(self._request_once)

    @property
    def server(self) -> ServerAsync:
        if self._server is None:
            self._server = ServerAsync(horizon_url=self._horizon_url, client=AiohttpClient())
        return self._server

    async def _request_once(self, description: str, request: Callable[[], Awaitable[Any]]) -> Any:
        async with timeout(self._request_timeout):
            return await request()

    async def _request(self, description: str, request: Callable[[], Awaitable[Any]], retry: bool = True) -> Any:
        self.logger().network(f"Horizon request: {description}")
        try:
            if retry:
                return await self._retrying_request(description, request)
            return await self._request_once(description, request)
        except LedgerOperationError:
            raise
        except Exception as e:
            raise LedgerOperationError(f"Horizon request {description} failed: {e!r}") from e

    async def load_account(self, account_id: str) -> Account:
        return await self._request(f"load account {account_id}",
                                   lambda: self.server.load_account(account_id))

    async def account_record(self, account_id: str) -> Dict[str, Any]:
        return await self._request(f"account {account_id}",
                                   lambda: self.server.accounts().account_id(account_id).call())

    async def fetch_base_fee(self) -> int:
        return await self._request("base fee", lambda: self.server.fetch_base_fee())

    async def accounts_for_signer(self, signer: str) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        while True:
            def page_request(cursor=cursor):
                builder = self.server.accounts().for_signer(signer).limit(PAGE_LIMIT)
                if cursor is not None:
                    builder = builder.cursor(cursor)
                return builder.call()
            response = await self._request(f"accounts for signer {signer}", page_request)
            page = response["_embedded"]["records"]
            records.extend(page)
            if len(page) < PAGE_LIMIT:
                return records
            cursor = page[-1]["paging_token"]

    async def claimable_balances_for_claimant(self, claimant: str) -> List[Dict[str, Any]]:
        response = await self._request(
            f"claimable balances for claimant {claimant}",
            lambda: self.server.claimable_balances().for_claimant(claimant).limit(PAGE_LIMIT).call())
        return response["_embedded"]["records"]

    async def submit_transaction(self, transaction_xdr: str) -> Dict[str, Any]:
        # a submission that timed out may still land, so it is never retried here
        return await self._request("submit transaction",
                                   lambda: self.server.submit_transaction(transaction_xdr),
                                   retry=False)

    async def close(self):
        if self._server is not None:
            await self._server.close()
            self._server = None
