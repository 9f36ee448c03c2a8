"""
Builds the custody structures validators join: a staking escrow and a vault signer entry on the source
ledger, then a seat in the mint authority multisig on the mint ledger.
"""
import logging
from typing import Optional

from solders.keypair import Keypair as MintKeypair
from stellar_sdk import Asset, Keypair, Signer, TransactionBuilder

from charon.config.bridge_config_map import BridgeConfigMap
from charon.core.data_type.entities import Validator, Vault
from charon.core.data_type.intents import AddValidatorToMintIntent, VaultIntent
from charon.core.signer_schemes import mint_multisig_scheme, validator_stake_scheme, vault_scheme
from charon.ledger.ledger_accessor import LedgerAccessor
from charon.ledger.mint import token_transactions
from charon.ledger.mint.solana_client import MintLedgerClient
from charon.ledger.source.horizon_client import SourceLedgerClient
from charon.logger import CharonLogger


class VaultRegistrar:
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
                 controller_config_keypair: Keypair,
                 controller_mint_keypair: MintKeypair):
        self._config = config
        self._source_client = source_client
        self._mint_client = mint_client
        self._accessor = accessor
        self._controller_keypair = controller_keypair
        self._controller_config_keypair = controller_config_keypair
        self._controller_mint_keypair = controller_mint_keypair

    async def _config_account_builder(self) -> TransactionBuilder:
        source_account = await self._source_client.load_account(self._controller_config_keypair.public_key)
        base_fee = await self._source_client.fetch_base_fee()
        return TransactionBuilder(source_account=source_account,
                                  network_passphrase=self._config.network_passphrase,
                                  base_fee=base_fee)

    def _append_validator_stake(self, builder: TransactionBuilder, validator: Validator, stake_escrow: Keypair):
        """
        The validator funds its staking escrow, which only the controller config key can move on its own.
        """
        scheme = validator_stake_scheme()
        builder.append_create_account_op(destination=stake_escrow.public_key,
                                         starting_balance=self._config.validator_staking_amount,
                                         source=validator.source_key)
        builder.append_set_options_op(
            signer=Signer.ed25519_public_key(self._controller_config_keypair.public_key, scheme.controller_weight),
            master_weight=0,
            low_threshold=scheme.threshold,
            med_threshold=scheme.threshold,
            high_threshold=scheme.threshold,
            source=stake_escrow.public_key)
        builder.append_set_options_op(
            signer=Signer.ed25519_public_key(validator.source_key, scheme.validator_weight),
            source=stake_escrow.public_key)

    def _append_vault_signers(self, builder: TransactionBuilder, vault: Vault, validator: Validator):
        """
        Re-derives controller weight and thresholds for the vault's new validator count.
        """
        scheme = vault_scheme(len(vault.validators))
        builder.append_set_options_op(
            signer=Signer.ed25519_public_key(self._controller_keypair.public_key, scheme.controller_weight),
            source=vault.account_id)
        builder.append_set_options_op(
            signer=Signer.ed25519_public_key(validator.source_key, scheme.validator_weight),
            master_weight=0,
            low_threshold=scheme.threshold,
            med_threshold=scheme.threshold,
            high_threshold=scheme.threshold,
            source=vault.account_id)

    def _vault_intent(self, transaction_xdr: str, vault: Vault, validator: Validator, stake_escrow: Keypair,
                      bootstrap: bool) -> VaultIntent:
        intent = VaultIntent(transaction_xdr=transaction_xdr,
                             vault_account_id=vault.account_id,
                             validator_escrow_account_id=stake_escrow.public_key,
                             validator_source_key=validator.source_key,
                             controller_key=self._controller_keypair.public_key,
                             controller_config_key=self._controller_config_keypair.public_key,
                             bootstrap=bootstrap,
                             validator_count=len(vault.validators))
        self.logger().intent("Vault bootstrap" if bootstrap else "Add validator to vault",
                             vault=vault.account_id,
                             validator=validator.source_key,
                             validators=len(vault.validators))
        return intent

    async def bootstrap_vault_intent(self, validator: Validator) -> VaultIntent:
        """
        Creates the first vault as a 2-of-2 between the controller and the validator. The vault's own key is
        discarded after signing since its master weight drops to zero.
        """
        if validator.source_key is None:
            raise ValueError("A validator needs a source ledger key to join a vault.")
        vault_keypair = Keypair.random()
        stake_escrow = Keypair.random()
        vault = Vault(account_id=vault_keypair.public_key, validators=(validator,))

        builder = await self._config_account_builder()
        self._append_validator_stake(builder, validator, stake_escrow)
        builder.append_create_account_op(destination=vault.account_id,
                                         starting_balance=self._config.vault_starting_balance,
                                         source=validator.source_key)
        self._append_vault_signers(builder, vault, validator)
        transaction = builder.set_timeout(self._config.transaction_timeout).build()
        transaction.sign(vault_keypair)
        transaction.sign(stake_escrow)
        transaction.sign(self._controller_config_keypair)
        return self._vault_intent(transaction.to_xdr(), vault, validator, stake_escrow, bootstrap=True)

    async def add_validator_to_vault_intent(self, validator: Validator) -> VaultIntent:
        """
        Adds a validator to an existing vault. Raises NoVaultError when there is none yet. The validator and
        enough current vault validators must co-sign before submission.
        """
        if validator.source_key is None:
            raise ValueError("A validator needs a source ledger key to join a vault.")
        controller = await self._accessor.build_controller()
        vault = controller.register_validator_to_vault(validator)
        stake_escrow = Keypair.random()

        builder = await self._config_account_builder()
        self._append_validator_stake(builder, validator, stake_escrow)
        builder.append_payment_op(destination=vault.account_id,
                                  asset=Asset.native(),
                                  amount=self._config.vault_top_up_amount,
                                  source=validator.source_key)
        self._append_vault_signers(builder, vault, validator)
        transaction = builder.set_timeout(self._config.transaction_timeout).build()
        transaction.sign(stake_escrow)
        transaction.sign(self._controller_config_keypair)
        transaction.sign(self._controller_keypair)
        return self._vault_intent(transaction.to_xdr(), vault, validator, stake_escrow, bootstrap=False)

    async def add_validator_to_mint_intent(self, validator: Validator, asset: Asset) -> AddValidatorToMintIntent:
        """
        Moves the mint authority to a fresh multisig of the controller, the known mint validators and the
        joining validator. The joining validator pays for the multisig account and must sign last.
        """
        if validator.mint_key is None:
            raise ValueError("A validator needs a mint ledger key to join the mint authority.")
        mint = await self._accessor.get_mint(asset)
        controller = await self._accessor.build_controller([mint])
        updated_mint = controller.register_validator_to_mint(validator, mint)
        scheme = mint_multisig_scheme(len(updated_mint.validators))

        controller_mint_key = str(self._controller_mint_keypair.pubkey())
        multisig_keypair = MintKeypair()
        members = [controller_mint_key, *mint.validator_mint_keys, validator.mint_key]
        current_signers = [controller_mint_key, *mint.validator_mint_keys] if mint.is_delegated else []

        message = token_transactions.build_reassign_mint_authority_message(
            payer=validator.mint_key,
            mint_address=mint.mint_address,
            current_authority=mint.authority,
            current_signers=current_signers,
            multisig_address=str(multisig_keypair.pubkey()),
            members=members,
            required_signatures=scheme.required_signatures,
            rent_lamports=await self._mint_client.get_multisig_rent(),
            recent_blockhash=await self._mint_client.get_latest_blockhash())
        transaction = token_transactions.unsigned_transaction(
            message, [self._controller_mint_keypair, multisig_keypair])

        intent = AddValidatorToMintIntent(mint_address=mint.mint_address,
                                          validator_mint_key=validator.mint_key,
                                          multisig_address=str(multisig_keypair.pubkey()),
                                          controller_mint_key=controller_mint_key,
                                          required_signatures=scheme.required_signatures,
                                          mint_transaction_base64=token_transactions.serialize_transaction(
                                              transaction))
        self.logger().intent("Add validator to mint",
                             mint=mint.mint_address,
                             validator=validator.mint_key,
                             multisig=intent.multisig_address,
                             required_signatures=scheme.required_signatures)
        return intent
