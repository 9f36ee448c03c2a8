import asyncio
import logging
import struct
from typing import Any, Awaitable, Callable, List, NamedTuple, Optional

from async_timeout import timeout
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed, Finalized
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token.async_client import AsyncToken
from spl.token.constants import TOKEN_PROGRAM_ID

from charon.core.utils.async_retry import async_retry
from charon.exceptions import LedgerOperationError
from charon.logger import CharonLogger

# m (u8), n (u8), is_initialized (u8), then 11 signer keys
MULTISIG_SIZE = 355
MULTISIG_HEADER = struct.Struct("<BBB")
MULTISIG_MAX_SIGNERS = 11
PUBKEY_LENGTH = 32


class MintInfo(NamedTuple):
    address: str
    mint_authority: Optional[str]
    supply: int
    decimals: int


def parse_multisig_signers(data: bytes) -> List[str]:
    """
    Returns the initialized signer keys of an SPL token multisig account, in member order.
    """
    if len(data) < MULTISIG_SIZE:
        raise LedgerOperationError(f"Multisig account data has {len(data)} bytes, expected {MULTISIG_SIZE}.")
    _, member_count, is_initialized = MULTISIG_HEADER.unpack_from(data, 0)
    if not is_initialized:
        raise LedgerOperationError("Multisig account is not initialized.")
    signers = []
    for i in range(min(member_count, MULTISIG_MAX_SIGNERS)):
        offset = MULTISIG_HEADER.size + i * PUBKEY_LENGTH
        signers.append(str(Pubkey.from_bytes(data[offset:offset + PUBKEY_LENGTH])))
    return signers


class MintLedgerClient:
    """
    Read access to the mint ledger plus creation of wrapped asset mints, which the controller pays for.
    """

    _logger: Optional[CharonLogger] = None

    @classmethod
    def logger(cls) -> CharonLogger:
        if cls._logger is None:
            cls._logger = logging.getLogger(__name__)
        return cls._logger

    def __init__(self,
                 rpc_url: str,
                 controller_keypair: Keypair,
                 retry_count: int = 3,
                 retry_interval: float = 0.5,
                 request_timeout: float = 10.0,
                 connection: Optional[AsyncClient] = None):
        self._rpc_url = rpc_url
        self._controller_keypair = controller_keypair
        self._connection = connection
        self._request_timeout = request_timeout
        self._retrying_request = async_retry(retry_count=retry_count,
                                             exception_types=[SolanaRpcException, asyncio.TimeoutError],
                                             logger=self.logger(),
                                             retry_interval=retry_interval)(self._request_once)

    @property
    def connection(self) -> AsyncClient:
        if self._connection is None:
            self._connection = AsyncClient(self._rpc_url, commitment=Confirmed)
        return self._connection

    async def _request_once(self, description: str, request: Callable[[], Awaitable[Any]]) -> Any:
        async with timeout(self._request_timeout):
            return await request()

    async def _request(self, description: str, request: Callable[[], Awaitable[Any]], retry: bool = True) -> Any:
        self.logger().network(f"Solana request: {description}")
        try:
            if retry:
                return await self._retrying_request(description, request)
            return await self._request_once(description, request)
        except LedgerOperationError:
            raise
        except Exception as e:
            raise LedgerOperationError(f"Solana request {description} failed: {e!r}") from e

    def _token(self, mint_address: str) -> AsyncToken:
        return AsyncToken(self.connection, Pubkey.from_string(mint_address), TOKEN_PROGRAM_ID, self._controller_keypair)

    async def get_mint_info(self, mint_address: str) -> MintInfo:
        info = await self._request(f"mint info {mint_address}", lambda: self._token(mint_address).get_mint_info())
        authority = str(info.mint_authority) if info.mint_authority is not None else None
        return MintInfo(address=mint_address, mint_authority=authority, supply=info.supply, decimals=info.decimals)

    async def _account_info(self, address: str):
        response = await self._request(f"account info {address}",
                                       lambda: self.connection.get_account_info(Pubkey.from_string(address)))
        return response.value

    async def is_system_owned(self, address: str) -> bool:
        """
        True when the address is a plain wallet rather than a program owned account such as a multisig.
        """
        account = await self._account_info(address)
        return account is None or account.owner == SYSTEM_PROGRAM_ID

    async def get_multisig_signers(self, address: str) -> List[str]:
        account = await self._account_info(address)
        if account is None:
            raise LedgerOperationError(f"Multisig account {address} does not exist.")
        if account.owner != TOKEN_PROGRAM_ID:
            raise LedgerOperationError(f"Account {address} is not owned by the token program.")
        return parse_multisig_signers(bytes(account.data))

    async def get_latest_blockhash(self) -> Hash:
        response = await self._request("latest blockhash", lambda: self.connection.get_latest_blockhash())
        return response.value.blockhash

    async def get_multisig_rent(self) -> int:
        response = await self._request(
            "multisig rent", lambda: self.connection.get_minimum_balance_for_rent_exemption(MULTISIG_SIZE))
        return response.value

    async def get_transaction_signatures(self, transaction_id: str) -> List[bytes]:
        """
        Signatures of a finalized transaction. A transaction that is not finalized yet is an error.
        """
        response = await self._request(
            f"transaction {transaction_id}",
            lambda: self.connection.get_transaction(Signature.from_string(transaction_id),
                                                    encoding="json",
                                                    commitment=Finalized,
                                                    max_supported_transaction_version=0))
        if response.value is None:
            raise LedgerOperationError(f"Transaction {transaction_id} is not finalized.")
        return [bytes(signature) for signature in response.value.transaction.transaction.signatures]

    async def create_mint(self, decimals: int) -> str:
        token = await self._request(
            "create mint",
            lambda: AsyncToken.create_mint(self.connection,
                                           payer=self._controller_keypair,
                                           mint_authority=self._controller_keypair.pubkey(),
                                           decimals=decimals,
                                           program_id=TOKEN_PROGRAM_ID),
            retry=False)
        return str(token.pubkey)

    async def close(self):
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
