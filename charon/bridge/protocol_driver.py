"""
Lock and mint protocol.

A bridge operation moves through four phases keyed by its escrow transaction account (ETxA):

    begin_lock     -> source_started   user posts a claimable balance to a fresh ETxA
    begin_mint     -> target_started   the controller commits to its mint transaction signature
    complete_mint  (verified only)     the candidate mint transaction must carry the committed signature
    complete_lock  -> source_released  the finalized mint releases the balance into the vault

The two ledgers share no consensus. Instead, the SHA-256 of the controller's signature over the mint
transaction is recorded on the source ledger before anyone else can co-sign, and only a mint transaction
carrying that exact signature can move the operation forward. The plaintext signature is dropped right
after hashing and recreated deterministically in complete_mint.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from solders.keypair import Keypair as MintKeypair
from stellar_sdk import Asset, Claimant, ClaimPredicate, Keypair, Signer, TransactionBuilder

from charon.config.bridge_config_map import BridgeConfigMap
from charon.core import commitment
from charon.core.data_type.entities import User
from charon.core.data_type.intents import BeginLockIntent, BeginMintIntent, CompleteLockIntent, CompleteMintIntent
from charon.core.signer_schemes import escrow_scheme
from charon.exceptions import EscrowStateError, MintAuthorityNotDelegatedError, SignatureCommitmentMismatchError
from charon.ledger.ledger_accessor import (
    SOURCE_VAULT_ATTRIBUTE,
    STATE_ATTRIBUTE,
    TARGET_CHAIN_ATTRIBUTE,
    TARGET_TRANSACTION_ID_ATTRIBUTE,
    TARGET_WALLET_ATTRIBUTE,
    EscrowStatus,
    LedgerAccessor,
    asset_canonical_name,
)
from charon.ledger.mint import token_transactions
from charon.ledger.mint.solana_client import MintLedgerClient
from charon.ledger.source.horizon_client import SourceLedgerClient
from charon.logger import CharonLogger

# the source ledger supports 7 decimal places, the wrapped mint uses the same precision
WRAPPED_ASSET_DECIMALS = 7

# every account keeps two base reserves plus one per signer, data entry and trustline
BASE_RESERVE = Decimal("0.5")
# target_chain, target_wallet, source_vault, state and target_transaction_id
ESCROW_DATA_ENTRIES = 5
# fees of the begin mint and complete lock transactions the escrow account pays
ESCROW_FEE_ALLOWANCE = Decimal("1")


def to_base_units(amount: str) -> int:
    try:
        value = Decimal(amount).scaleb(WRAPPED_ASSET_DECIMALS)
    except InvalidOperation:
        raise ValueError(f"{amount} is not a valid amount.")
    if value <= 0 or value != value.to_integral_value():
        raise ValueError(f"{amount} is not a positive amount with at most {WRAPPED_ASSET_DECIMALS} decimals.")
    return int(value)


def escrow_starting_balance(configured: str, validator_count: int, asset: Asset) -> str:
    """
    The configured escrow starting balance, raised when it would not cover the reserve of the escrow
    account's signers, data entries and, for issued assets, its trustline.
    """
    subentries = validator_count + 2 + ESCROW_DATA_ENTRIES + (0 if asset.is_native() else 1)
    minimum = BASE_RESERVE * (2 + subentries) + ESCROW_FEE_ALLOWANCE
    return str(max(Decimal(configured), minimum))


class ProtocolDriver:
    _logger: Optional[CharonLogger] = None

    @classmethod
    def logger(cls) -> CharonLogger:
        if cls._logger is None:
            cls._logger = logging.getLogger(__name__)
        return cls._logger

    def __init__(self,
                 config: BridgeConfigMap,
                 source_client: SourceLedgerClient,
                 mint_client: MintLedgerClient,
                 accessor: LedgerAccessor,
                 controller_keypair: Keypair,
                 controller_mint_keypair: MintKeypair):
        self._config = config
        self._source_client = source_client
        self._mint_client = mint_client
        self._accessor = accessor
        self._controller_keypair = controller_keypair
        self._controller_mint_keypair = controller_mint_keypair

    @property
    def controller_mint_key(self) -> str:
        return str(self._controller_mint_keypair.pubkey())

    async def _builder(self, source_account_id: str) -> TransactionBuilder:
        source_account = await self._source_client.load_account(source_account_id)
        base_fee = await self._source_client.fetch_base_fee()
        return TransactionBuilder(source_account=source_account,
                                  network_passphrase=self._config.network_passphrase,
                                  base_fee=base_fee)

    async def begin_lock(self, asset: Asset, amount: str, user: User, target_wallet: str) -> BeginLockIntent:
        """
        Creates a fresh ETxA funded by the user, hands its signing power to the vault validators and the
        controller, and posts the user's claimable balance to it. Only the ETxA key signs here; the user
        signs and submits.

        :param target_wallet: token account on the mint ledger that receives the wrapped asset
        """
        to_base_units(amount)
        await self._accessor.get_mint(asset)
        controller = await self._accessor.build_controller()
        vault = controller.select_vault_for_lock(asset, amount)
        scheme = escrow_scheme(len(vault.validators))
        escrow = Keypair.random()
        reclaim_after = self._config.reclaim_after_seconds

        starting_balance = escrow_starting_balance(self._config.escrow_starting_balance, len(vault.validators), asset)

        builder = await self._builder(user.source_key)
        builder.append_create_account_op(destination=escrow.public_key,
                                         starting_balance=starting_balance,
                                         source=user.source_key)
        if not asset.is_native():
            # the escrow account claims the balance itself before paying it on
            builder.append_change_trust_op(asset=asset, source=escrow.public_key)
        for validator in vault.validators:
            builder.append_set_options_op(
                signer=Signer.ed25519_public_key(validator.source_key, scheme.validator_weight),
                source=escrow.public_key)
        builder.append_set_options_op(
            signer=Signer.ed25519_public_key(self._controller_keypair.public_key, scheme.controller_weight),
            master_weight=0,
            low_threshold=scheme.threshold,
            med_threshold=scheme.threshold,
            high_threshold=scheme.threshold,
            source=escrow.public_key)
        builder.append_set_options_op(
            signer=Signer.ed25519_public_key(user.source_key, scheme.user_weight),
            source=escrow.public_key)
        builder.append_create_claimable_balance_op(
            asset=asset,
            amount=amount,
            claimants=[
                Claimant(destination=escrow.public_key,
                         predicate=ClaimPredicate.predicate_before_relative_time(reclaim_after)),
                Claimant(destination=user.source_key,
                         predicate=ClaimPredicate.predicate_not(
                             ClaimPredicate.predicate_before_relative_time(reclaim_after + 1))),
            ],
            source=user.source_key)
        builder.append_manage_data_op(TARGET_CHAIN_ATTRIBUTE, self._config.target_chain.value,
                                      source=escrow.public_key)
        builder.append_manage_data_op(TARGET_WALLET_ATTRIBUTE, target_wallet, source=escrow.public_key)
        builder.append_manage_data_op(SOURCE_VAULT_ATTRIBUTE, vault.account_id, source=escrow.public_key)
        builder.append_manage_data_op(STATE_ATTRIBUTE, EscrowStatus.SOURCE_STARTED, source=escrow.public_key)
        transaction = builder.set_timeout(self._config.transaction_timeout).build()
        transaction.sign(escrow)

        self.logger().intent("Begin lock",
                             escrow=escrow.public_key,
                             vault=vault.account_id,
                             asset=asset_canonical_name(asset),
                             amount=amount)
        return BeginLockIntent(transaction_xdr=transaction.to_xdr(),
                               vault_account_id=vault.account_id,
                               escrow_account_id=escrow.public_key,
                               controller_key=self._controller_keypair.public_key,
                               asset=asset_canonical_name(asset),
                               amount=Decimal(amount))

    async def begin_mint(self, user: User, escrow_account_id: str) -> BeginMintIntent:
        """
        Prepares the mint transaction, signs it with the controller key, and records the hash of that
        signature on the ETxA. The returned mint transaction carries no controller signature; it only becomes
        usable through complete_mint.
        """
        escrow = await self._accessor.get_escrow_account(escrow_account_id)
        escrow.require_state(EscrowStatus.SOURCE_STARTED)
        if escrow.target_wallet is None:
            raise EscrowStateError(f"Escrow account {escrow_account_id} has no target wallet.")
        balance = await self._accessor.get_pending_balance(escrow)
        mint = await self._accessor.get_mint(balance.asset)
        if not mint.is_delegated:
            raise MintAuthorityNotDelegatedError(
                f"Mint {mint.mint_address} authority is still held by the controller alone.")
        amount_base_units = to_base_units(balance.amount)

        message = token_transactions.build_mint_to_message(
            payer=user.mint_key,
            mint_address=mint.mint_address,
            destination=escrow.target_wallet,
            mint_authority=mint.authority,
            signers=[self.controller_mint_key, *mint.validator_mint_keys],
            amount=amount_base_units,
            recent_blockhash=await self._mint_client.get_latest_blockhash())
        signature = token_transactions.sign_message(message, self._controller_mint_keypair)
        signature_hash = commitment.signature_commitment(bytes(signature))
        del signature
        mint_transaction = token_transactions.unsigned_transaction(message)

        builder = await self._builder(escrow_account_id)
        builder.append_manage_data_op(TARGET_TRANSACTION_ID_ATTRIBUTE, signature_hash, source=escrow_account_id)
        builder.append_manage_data_op(STATE_ATTRIBUTE, EscrowStatus.TARGET_STARTED, source=escrow_account_id)
        transaction = builder.set_timeout(self._config.transaction_timeout).build()
        transaction.sign(self._controller_keypair)

        self.logger().intent("Begin mint",
                             escrow=escrow_account_id,
                             mint=mint.mint_address,
                             amount=amount_base_units,
                             commitment=signature_hash)
        return BeginMintIntent(transaction_xdr=transaction.to_xdr(),
                               target_wallet=escrow.target_wallet,
                               mint_address=mint.mint_address,
                               mint_authority=mint.authority,
                               controller_mint_key=self.controller_mint_key,
                               amount_base_units=amount_base_units,
                               mint_transaction_base64=token_transactions.serialize_transaction(mint_transaction),
                               commitment=signature_hash)

    async def complete_mint(self, user: User, escrow_account_id: str,
                            mint_transaction_base64: str) -> CompleteMintIntent:
        """
        Re-signs the candidate mint transaction with the controller key and accepts it only when that
        signature hashes to the ETxA commitment. Signatures already collected on the candidate are kept.
        """
        escrow = await self._accessor.get_escrow_account(escrow_account_id)
        escrow.require_state(EscrowStatus.TARGET_STARTED)
        expected = escrow.target_transaction_id
        if expected is None:
            raise EscrowStateError(f"Escrow account {escrow_account_id} has no recorded commitment.")

        try:
            candidate = token_transactions.deserialize_transaction(mint_transaction_base64)
        except Exception as e:
            raise SignatureCommitmentMismatchError(
                f"The candidate for escrow {escrow_account_id} is not a mint ledger transaction.") from e
        message = candidate.message
        if token_transactions.signer_index(message, self._controller_mint_keypair.pubkey()) is None:
            self.logger().warning(f"Rejected mint transaction for escrow {escrow_account_id}: "
                                  f"the controller is not one of its signers.")
            raise SignatureCommitmentMismatchError(
                "The mint transaction does not require a controller signature.")
        signature = token_transactions.sign_message(message, self._controller_mint_keypair)
        try:
            commitment.verify_commitment(expected, bytes(signature))
        except SignatureCommitmentMismatchError:
            self.logger().warning(f"Rejected mint transaction for escrow {escrow_account_id}: "
                                  f"signature does not match commitment {expected}.")
            raise
        signed = token_transactions.with_signatures(message, candidate.signatures, [self._controller_mint_keypair])

        self.logger().intent("Complete mint", escrow=escrow_account_id, commitment=expected)
        return CompleteMintIntent(target_wallet=escrow.target_wallet,
                                  controller_mint_key=self.controller_mint_key,
                                  mint_transaction_base64=token_transactions.serialize_transaction(signed),
                                  commitment=expected)

    async def complete_lock(self, escrow_account_id: str, mint_transaction_id: str) -> CompleteLockIntent:
        """
        Once the committed mint transaction is finalized on the mint ledger, claims the user's balance into
        the ETxA and pays it to the vault selected at lock time.
        """
        escrow = await self._accessor.get_escrow_account(escrow_account_id)
        escrow.require_state(EscrowStatus.TARGET_STARTED)
        expected = escrow.target_transaction_id
        if expected is None:
            raise EscrowStateError(f"Escrow account {escrow_account_id} has no recorded commitment.")
        signatures = await self._mint_client.get_transaction_signatures(mint_transaction_id)
        try:
            commitment.verify_any_commitment(expected, signatures)
        except SignatureCommitmentMismatchError:
            self.logger().warning(f"Rejected mint transaction {mint_transaction_id} for escrow "
                                  f"{escrow_account_id}: no signature matches commitment {expected}.")
            raise

        balance = await self._accessor.get_pending_balance(escrow)
        controller = await self._accessor.build_controller()
        vault = controller.select_vault_for_release(escrow.source_vault)

        builder = await self._builder(escrow_account_id)
        builder.append_claim_claimable_balance_op(balance_id=balance.balance_id, source=escrow_account_id)
        builder.append_payment_op(destination=vault.account_id,
                                  asset=balance.asset,
                                  amount=balance.amount,
                                  source=escrow_account_id)
        if not balance.asset.is_native():
            builder.append_change_trust_op(asset=balance.asset, limit="0", source=escrow_account_id)
        builder.append_manage_data_op(STATE_ATTRIBUTE, EscrowStatus.SOURCE_RELEASED, source=escrow_account_id)
        transaction = builder.set_timeout(self._config.transaction_timeout).build()
        transaction.sign(self._controller_keypair)

        self.logger().intent("Complete lock",
                             escrow=escrow_account_id,
                             vault=vault.account_id,
                             claimable_balance=balance.balance_id,
                             mint_transaction=mint_transaction_id)
        return CompleteLockIntent(transaction_xdr=transaction.to_xdr(),
                                  vault_account_id=vault.account_id,
                                  escrow_account_id=escrow_account_id,
                                  controller_key=self._controller_keypair.public_key,
                                  claimable_balance_id=balance.balance_id)
