"""
Read-only reconstruction of bridge entities from ledger account data. The ledgers are the only durable
store, so every call reads them afresh.
"""
import base64
import binascii
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from stellar_sdk import Asset

from charon.core.controller import Controller, FirstVaultSelectionStrategy, VaultSelectionStrategy
from charon.core.data_type.entities import Mint, Validator, Vault
from charon.core.signer_schemes import ESCROW_USER_WEIGHT
from charon.exceptions import EscrowStateError, LedgerOperationError, MintNotFoundError
from charon.ledger.mint.solana_client import MintLedgerClient
from charon.ledger.source.horizon_client import SourceLedgerClient
from charon.logger import CharonLogger

# the all-zero key fills unused SPL multisig slots
DEFAULT_PUBKEY = "11111111111111111111111111111111"

STATE_ATTRIBUTE = "state"
TARGET_CHAIN_ATTRIBUTE = "target_chain"
TARGET_WALLET_ATTRIBUTE = "target_wallet"
TARGET_TRANSACTION_ID_ATTRIBUTE = "target_transaction_id"
SOURCE_VAULT_ATTRIBUTE = "source_vault"


class EscrowStatus:
    SOURCE_STARTED = "source_started"
    TARGET_STARTED = "target_started"
    SOURCE_RELEASED = "source_released"


@dataclass(frozen=True)
class PendingBalance:
    balance_id: str
    asset: Asset
    amount: str
    sponsor: Optional[str]


@dataclass(frozen=True)
class EscrowAccount:
    account_id: str
    data: Dict[str, str] = field(default_factory=dict)
    signers: Tuple[Tuple[str, int], ...] = field(default_factory=tuple)

    @property
    def state(self) -> Optional[str]:
        return self.data.get(STATE_ATTRIBUTE)

    @property
    def target_chain(self) -> Optional[str]:
        return self.data.get(TARGET_CHAIN_ATTRIBUTE)

    @property
    def target_wallet(self) -> Optional[str]:
        return self.data.get(TARGET_WALLET_ATTRIBUTE)

    @property
    def target_transaction_id(self) -> Optional[str]:
        return self.data.get(TARGET_TRANSACTION_ID_ATTRIBUTE)

    @property
    def source_vault(self) -> Optional[str]:
        return self.data.get(SOURCE_VAULT_ATTRIBUTE)

    @property
    def user_key(self) -> Optional[str]:
        for key, weight in self.signers:
            if weight == ESCROW_USER_WEIGHT:
                return key
        return None

    def require_state(self, *states: str):
        if self.state not in states:
            raise EscrowStateError(f"Escrow account {self.account_id} is in state {self.state}, "
                                   f"expected one of {', '.join(states)}.")


def decode_data_entries(record: Dict[str, Any]) -> Dict[str, str]:
    """
    Horizon returns account data values base64 encoded.
    """
    decoded = {}
    for name, value in (record.get("data") or {}).items():
        try:
            decoded[name] = base64.b64decode(value).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise LedgerOperationError(f"Account {record.get('id')} has an undecodable data entry {name}.") from e
    return decoded


def parse_asset(canonical: str) -> Asset:
    if canonical == "native":
        return Asset.native()
    code, issuer = canonical.split(":", 1)
    return Asset(code, issuer)


def asset_canonical_name(asset: Asset) -> str:
    return "native" if asset.is_native() else f"{asset.code}:{asset.issuer}"


class LedgerAccessor:
    _logger: Optional[CharonLogger] = None

    @classmethod
    def logger(cls) -> CharonLogger:
        if cls._logger is None:
            cls._logger = logging.getLogger(__name__)
        return cls._logger

    def __init__(self,
                 source_client: SourceLedgerClient,
                 mint_client: MintLedgerClient,
                 controller_key: str,
                 controller_config_key: str,
                 controller_mint_key: str,
                 selection_strategy: Optional[VaultSelectionStrategy] = None):
        self._source_client = source_client
        self._mint_client = mint_client
        self._controller_key = controller_key
        self._controller_config_key = controller_config_key
        self._controller_mint_key = controller_mint_key
        self._selection_strategy = selection_strategy

    async def get_existing_vaults(self) -> List[Vault]:
        """
        Every account the controller signs for, apart from its own account and escrow transaction accounts,
        is a vault. Its weight-1 signers other than the controller are its validators.

        Anyone can add the controller as a signer of their own account, so an unrestricted selection strategy
        will also list such accounts. Use a strategy whose `accepts_vault` knows the real vaults, such as
        `AllowlistVaultSelectionStrategy`, where that matters.
        """
        records = await self._source_client.accounts_for_signer(self._controller_key)
        strategy = self._selection_strategy or FirstVaultSelectionStrategy()
        vaults = []
        for record in records:
            account_id = record.get("account_id") or record["id"]
            if account_id == self._controller_key:
                continue
            if STATE_ATTRIBUTE in (record.get("data") or {}):
                continue
            if not strategy.accepts_vault(account_id):
                self.logger().debug(f"Skipping account {account_id}, not accepted as a vault.")
                continue
            validators = tuple(
                Validator(source_key=signer["key"], mint_key=None)
                for signer in record.get("signers", [])
                if signer["weight"] == 1 and signer["key"] not in (self._controller_key, account_id)
            )
            vaults.append(Vault(account_id=account_id, validators=validators))
        self.logger().debug(f"Found {len(vaults)} vaults signed by {self._controller_key}.")
        return vaults

    async def get_recorded_mint_address(self, asset: Asset) -> Optional[str]:
        record = await self._source_client.account_record(self._controller_config_key)
        return decode_data_entries(record).get(Controller.mint_attribute_name(asset))

    async def get_mint(self, asset: Asset) -> Mint:
        mint_address = await self.get_recorded_mint_address(asset)
        if mint_address is None:
            raise MintNotFoundError(f"No mint is recorded for {asset_canonical_name(asset)}.")
        mint_info = await self._mint_client.get_mint_info(mint_address)
        if mint_info.mint_authority is None:
            raise MintNotFoundError(f"Mint {mint_address} has no mint authority.")
        validators: Tuple[Validator, ...] = ()
        if not await self._mint_client.is_system_owned(mint_info.mint_authority):
            signers = await self._mint_client.get_multisig_signers(mint_info.mint_authority)
            validators = tuple(
                Validator(source_key=None, mint_key=signer)
                for signer in signers
                if signer not in (DEFAULT_PUBKEY, self._controller_mint_key)
            )
        return Mint(mint_address=mint_address, authority=mint_info.mint_authority, validators=validators)

    async def build_controller(self, mints: Optional[List[Mint]] = None) -> Controller:
        return Controller(await self.get_existing_vaults(), mints, self._selection_strategy)

    async def get_escrow_account(self, escrow_account_id: str) -> EscrowAccount:
        record = await self._source_client.account_record(escrow_account_id)
        signers = tuple((signer["key"], signer["weight"]) for signer in record.get("signers", []))
        return EscrowAccount(account_id=escrow_account_id, data=decode_data_entries(record), signers=signers)

    async def get_pending_balance(self, escrow: EscrowAccount) -> PendingBalance:
        """
        The claimable balance the user posted to the escrow account. When the user is known from the escrow
        signers, balances sponsored by anyone else are ignored.
        """
        records = await self._source_client.claimable_balances_for_claimant(escrow.account_id)
        user_key = escrow.user_key
        candidates = [r for r in records if user_key is None or r.get("sponsor") == user_key]
        if len(candidates) == 0:
            raise EscrowStateError(f"Escrow account {escrow.account_id} has no pending claimable balance.")
        record = candidates[0]
        return PendingBalance(balance_id=record["id"],
                              asset=parse_asset(record["asset"]),
                              amount=str(Decimal(record["amount"])),
                              sponsor=record.get("sponsor"))
