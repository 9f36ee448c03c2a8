"""
In-memory stand-ins for the two ledger clients. Built transactions are applied by interpreting their
operations, which lets bridge scenarios run end to end without a network.
"""
import base64
import hashlib
import struct
from copy import deepcopy
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

from solders.hash import Hash
from solders.keypair import Keypair as MintKeypair
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_PROGRAM_ID
from stellar_sdk import Account, Asset, TransactionEnvelope
from stellar_sdk.operation import (
    ChangeTrust,
    ClaimClaimableBalance,
    CreateAccount,
    CreateClaimableBalance,
    ManageData,
    Payment,
    SetOptions,
)

from charon.exceptions import LedgerOperationError
from charon.ledger.ledger_accessor import asset_canonical_name
from charon.ledger.mint.solana_client import MintInfo
from charon.ledger.mint.token_transactions import deserialize_transaction, serialize_transaction, with_signatures

INITIALIZE_MULTISIG = 2
SET_AUTHORITY = 6
MINT_TO = 7


class FakeSourceLedger:
    def __init__(self, network_passphrase: str, base_fee: int = 100):
        self.network_passphrase = network_passphrase
        self.base_fee = base_fee
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.claimable_balances: Dict[str, Dict[str, Any]] = {}
        self.payments: List[Dict[str, str]] = []
        self.trustlines: Dict[str, Set[str]] = {}
        self.submitted: List[str] = []
        self.read_count = 0

    def create_account(self, account_id: str, balance: str = "10000"):
        self.accounts[account_id] = {
            "id": account_id,
            "account_id": account_id,
            "sequence": "100",
            "paging_token": account_id,
            "signers": [{"key": account_id, "weight": 1, "type": "ed25519_public_key"}],
            "thresholds": {"low_threshold": 0, "med_threshold": 0, "high_threshold": 0},
            "data": {},
            "balances": [{"asset_type": "native", "balance": balance}],
        }

    def add_trustline(self, account_id: str, asset: Asset):
        self._account(account_id)
        self.trustlines.setdefault(account_id, set()).add(asset_canonical_name(asset))

    def has_trustline(self, account_id: str, asset: Asset) -> bool:
        return asset_canonical_name(asset) in self.trustlines.get(account_id, set())

    def _require_trustline(self, account_id: str, asset: Asset):
        if not asset.is_native() and not self.has_trustline(account_id, asset):
            raise LedgerOperationError(f"Account {account_id} has no trust for {asset_canonical_name(asset)}.")

    def _account(self, account_id: str) -> Dict[str, Any]:
        if account_id not in self.accounts:
            raise LedgerOperationError(f"Account {account_id} not found.")
        return self.accounts[account_id]

    async def load_account(self, account_id: str) -> Account:
        self.read_count += 1
        return Account(account_id, int(self._account(account_id)["sequence"]))

    async def account_record(self, account_id: str) -> Dict[str, Any]:
        self.read_count += 1
        return deepcopy(self._account(account_id))

    async def fetch_base_fee(self) -> int:
        return self.base_fee

    async def accounts_for_signer(self, signer: str) -> List[Dict[str, Any]]:
        self.read_count += 1
        return [deepcopy(record) for record in self.accounts.values()
                if any(s["key"] == signer and s["weight"] > 0 for s in record["signers"])]

    async def claimable_balances_for_claimant(self, claimant: str) -> List[Dict[str, Any]]:
        self.read_count += 1
        return [deepcopy(record) for record in self.claimable_balances.values()
                if any(c["destination"] == claimant for c in record["claimants"])]

    async def submit_transaction(self, transaction_xdr: str) -> Dict[str, Any]:
        return self.apply(transaction_xdr)

    async def close(self):
        pass

    def apply(self, transaction_xdr: str) -> Dict[str, Any]:
        envelope = TransactionEnvelope.from_xdr(transaction_xdr, self.network_passphrase)
        transaction = envelope.transaction
        transaction_source = transaction.source.account_id
        for operation in transaction.operations:
            source = operation.source.account_id if operation.source is not None else transaction_source
            self._apply_operation(source, operation)
        source_record = self._account(transaction_source)
        source_record["sequence"] = str(int(source_record["sequence"]) + 1)
        self.submitted.append(transaction_xdr)
        return {"id": envelope.hash_hex(), "hash": envelope.hash_hex(), "successful": True}

    def _apply_operation(self, source: str, operation):
        if isinstance(operation, CreateAccount):
            self.create_account(operation.destination, str(operation.starting_balance))
        elif isinstance(operation, SetOptions):
            self._apply_set_options(self._account(source), operation)
        elif isinstance(operation, ManageData):
            data = self._account(source)["data"]
            if operation.data_value is None:
                data.pop(operation.data_name, None)
            else:
                data[operation.data_name] = base64.b64encode(operation.data_value).decode()
        elif isinstance(operation, CreateClaimableBalance):
            balance_id = "00000000" + hashlib.sha256(
                f"{source}:{len(self.claimable_balances)}".encode()).hexdigest()
            asset = operation.asset
            self.claimable_balances[balance_id] = {
                "id": balance_id,
                "asset": "native" if asset.is_native() else f"{asset.code}:{asset.issuer}",
                "amount": f"{Decimal(operation.amount):.7f}",
                "sponsor": source,
                "claimants": [{"destination": c.destination, "predicate": {}} for c in operation.claimants],
            }
        elif isinstance(operation, ClaimClaimableBalance):
            if operation.balance_id not in self.claimable_balances:
                raise LedgerOperationError(f"Claimable balance {operation.balance_id} does not exist.")
            asset_name = self.claimable_balances[operation.balance_id]["asset"]
            if asset_name != "native":
                self._require_trustline(source, Asset(*asset_name.split(":")))
            del self.claimable_balances[operation.balance_id]
        elif isinstance(operation, Payment):
            self._account(operation.destination.account_id)
            self._require_trustline(operation.destination.account_id, operation.asset)
            self.payments.append({"source": source,
                                  "destination": operation.destination.account_id,
                                  "amount": str(operation.amount)})
        elif isinstance(operation, ChangeTrust):
            self._account(source)
            name = asset_canonical_name(operation.asset)
            if Decimal(operation.limit) == 0:
                self.trustlines.get(source, set()).discard(name)
            else:
                self.trustlines.setdefault(source, set()).add(name)

    @staticmethod
    def _apply_set_options(record: Dict[str, Any], operation: SetOptions):
        signers = record["signers"]
        if operation.master_weight is not None:
            signers[:] = [s for s in signers if s["key"] != record["id"]]
            if operation.master_weight > 0:
                signers.append({"key": record["id"], "weight": operation.master_weight,
                                "type": "ed25519_public_key"})
        for name in ("low_threshold", "med_threshold", "high_threshold"):
            if getattr(operation, name) is not None:
                record["thresholds"][name] = getattr(operation, name)
        if operation.signer is not None:
            key = operation.signer.signer_key.encoded_signer_key
            signers[:] = [s for s in signers if s["key"] != key]
            if operation.signer.weight > 0:
                signers.append({"key": key, "weight": operation.signer.weight, "type": "ed25519_public_key"})

    def signer_weights(self, account_id: str) -> Dict[str, int]:
        return {s["key"]: s["weight"] for s in self._account(account_id)["signers"]}

    def thresholds(self, account_id: str) -> Dict[str, int]:
        return dict(self._account(account_id)["thresholds"])

    def data_entry(self, account_id: str, name: str) -> Optional[str]:
        value = self._account(account_id)["data"].get(name)
        return base64.b64decode(value).decode() if value is not None else None


class FakeMintLedger:
    def __init__(self, controller_keypair: MintKeypair):
        self.controller_keypair = controller_keypair
        self.mints: Dict[str, Dict[str, Any]] = {}
        self.multisigs: Dict[str, Dict[str, Any]] = {}
        self.transactions: Dict[str, List[bytes]] = {}
        self.blockhash = Hash.new_unique()
        self.read_count = 0

    async def get_mint_info(self, mint_address: str) -> MintInfo:
        self.read_count += 1
        if mint_address not in self.mints:
            raise LedgerOperationError(f"Mint {mint_address} does not exist.")
        mint = self.mints[mint_address]
        return MintInfo(address=mint_address, mint_authority=mint["authority"], supply=mint["supply"], decimals=7)

    async def is_system_owned(self, address: str) -> bool:
        self.read_count += 1
        return address not in self.multisigs

    async def get_multisig_signers(self, address: str) -> List[str]:
        self.read_count += 1
        signers = list(self.multisigs[address]["signers"])
        # unused slots hold the default key on chain
        return signers + ["11111111111111111111111111111111"] * (11 - len(signers))

    async def get_latest_blockhash(self) -> Hash:
        return self.blockhash

    async def get_multisig_rent(self) -> int:
        return 3_382_800

    async def get_transaction_signatures(self, transaction_id: str) -> List[bytes]:
        if transaction_id not in self.transactions:
            raise LedgerOperationError(f"Transaction {transaction_id} is not finalized.")
        return list(self.transactions[transaction_id])

    async def create_mint(self, decimals: int) -> str:
        mint_address = str(MintKeypair().pubkey())
        self.mints[mint_address] = {"authority": str(self.controller_keypair.pubkey()), "supply": 0}
        return mint_address

    async def close(self):
        pass

    def apply(self, transaction_base64: str) -> str:
        """
        Applies a fully signed transaction and returns its id, the base58 first signature.
        """
        transaction = deserialize_transaction(transaction_base64)
        transaction.verify()
        message = transaction.message
        keys = [str(key) for key in message.account_keys]
        for instruction in message.instructions:
            if message.account_keys[instruction.program_id_index] != TOKEN_PROGRAM_ID:
                continue
            accounts = [keys[i] for i in bytes(instruction.accounts)]
            data = bytes(instruction.data)
            if data[0] == INITIALIZE_MULTISIG:
                # multisig, rent sysvar, then the members
                self.multisigs[accounts[0]] = {"m": data[1], "signers": accounts[2:]}
            elif data[0] == SET_AUTHORITY:
                self.mints[accounts[0]]["authority"] = str(Pubkey.from_bytes(data[3:35]))
            elif data[0] == MINT_TO:
                (amount,) = struct.unpack_from("<Q", data, 1)
                self.mints[accounts[0]]["supply"] += amount
        transaction_id = str(transaction.signatures[0])
        self.transactions[transaction_id] = [bytes(signature) for signature in transaction.signatures]
        return transaction_id


def add_signatures(transaction_base64: str, *keypairs: MintKeypair) -> str:
    """
    Signs a serialized mint ledger transaction with out of band member keys, keeping existing signatures.
    """
    transaction = deserialize_transaction(transaction_base64)
    return serialize_transaction(with_signatures(transaction.message, transaction.signatures, keypairs))
