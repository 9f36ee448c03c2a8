"""
Intents returned to callers. They carry unsigned or partially signed transaction payloads plus the public
identifiers needed to route further signing. The bridge never submits them.
"""
import json
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict

from charon.logger import log_encoder


class IntentBase:
    def to_json_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_json_dict(), default=log_encoder)


@dataclass(frozen=True)
class CreateMintResult(IntentBase):
    source_transaction_id: str
    mint_address: str


@dataclass(frozen=True)
class VaultIntent(IntentBase):
    """
    Bootstraps a vault (`bootstrap` is True) or adds a validator to an existing one.
    """
    transaction_xdr: str
    vault_account_id: str
    validator_escrow_account_id: str
    validator_source_key: str
    controller_key: str
    controller_config_key: str
    bootstrap: bool
    validator_count: int


@dataclass(frozen=True)
class AddValidatorToMintIntent(IntentBase):
    mint_address: str
    validator_mint_key: str
    multisig_address: str
    controller_mint_key: str
    required_signatures: int
    mint_transaction_base64: str


@dataclass(frozen=True)
class BeginLockIntent(IntentBase):
    transaction_xdr: str
    vault_account_id: str
    escrow_account_id: str
    controller_key: str
    asset: str
    amount: Decimal


@dataclass(frozen=True)
class BeginMintIntent(IntentBase):
    transaction_xdr: str
    target_wallet: str
    mint_address: str
    mint_authority: str
    controller_mint_key: str
    amount_base_units: int
    mint_transaction_base64: str
    commitment: str


@dataclass(frozen=True)
class CompleteMintIntent(IntentBase):
    target_wallet: str
    controller_mint_key: str
    mint_transaction_base64: str
    commitment: str


@dataclass(frozen=True)
class CompleteLockIntent(IntentBase):
    transaction_xdr: str
    vault_account_id: str
    escrow_account_id: str
    controller_key: str
    claimable_balance_id: str


@dataclass(frozen=True)
class FeeBumpIntent(IntentBase):
    transaction_xdr: str
    fee_source: str
    inner_transaction_hash: str
