import logging
from typing import List, Optional

from solders.keypair import Keypair as MintKeypair
from stellar_sdk import Asset, Keypair, TransactionBuilder, TransactionEnvelope

from charon.bridge.protocol_driver import WRAPPED_ASSET_DECIMALS, ProtocolDriver
from charon.bridge.vault_registrar import VaultRegistrar
from charon.config.bridge_config_map import BridgeConfigMap
from charon.core.controller import Controller, VaultSelectionStrategy
from charon.core.data_type.entities import Mint, User, Validator, Vault
from charon.core.data_type.intents import (
    AddValidatorToMintIntent,
    BeginLockIntent,
    BeginMintIntent,
    CompleteLockIntent,
    CompleteMintIntent,
    CreateMintResult,
    FeeBumpIntent,
    VaultIntent,
)
from charon.core.utils.async_utils import safe_gather
from charon.exceptions import MintAlreadyExistsError, NoVaultError
from charon.ledger.ledger_accessor import LedgerAccessor, asset_canonical_name
from charon.ledger.mint.solana_client import MintLedgerClient
from charon.ledger.source.horizon_client import SourceLedgerClient
from charon.logger import CharonLogger


class BridgeService:
    """
    Entry point for embedding environments. Wires the ledger clients, the accessor, the registrar and the
    protocol driver around the controller's three keys:

    - `controller_keypair` co-signs vaults and escrow transaction accounts on the source ledger
    - `controller_config_keypair` owns the configuration account recording mint addresses and reclaims
      validator stakes
    - `controller_mint_keypair` is the controller's member key in the mint authority multisig
    """

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
                 controller_keypair: Keypair,
                 controller_config_keypair: Keypair,
                 controller_mint_keypair: MintKeypair,
                 selection_strategy: Optional[VaultSelectionStrategy] = None):
        self._config = config
        self._source_client = source_client
        self._mint_client = mint_client
        self._controller_keypair = controller_keypair
        self._controller_config_keypair = controller_config_keypair
        self._controller_mint_keypair = controller_mint_keypair
        self._accessor = LedgerAccessor(source_client=source_client,
                                        mint_client=mint_client,
                                        controller_key=controller_keypair.public_key,
                                        controller_config_key=controller_config_keypair.public_key,
                                        controller_mint_key=str(controller_mint_keypair.pubkey()),
                                        selection_strategy=selection_strategy)
        self._registrar = VaultRegistrar(config=config,
                                         source_client=source_client,
                                         mint_client=mint_client,
                                         accessor=self._accessor,
                                         controller_keypair=controller_keypair,
                                         controller_config_keypair=controller_config_keypair,
                                         controller_mint_keypair=controller_mint_keypair)
        self._driver = ProtocolDriver(config=config,
                                      source_client=source_client,
                                      mint_client=mint_client,
                                      accessor=self._accessor,
                                      controller_keypair=controller_keypair,
                                      controller_mint_keypair=controller_mint_keypair)

    @classmethod
    def from_config(cls,
                    config: BridgeConfigMap,
                    controller_secret: str,
                    controller_config_secret: str,
                    controller_mint_keypair: MintKeypair,
                    selection_strategy: Optional[VaultSelectionStrategy] = None) -> "BridgeService":
        source_client = SourceLedgerClient(horizon_url=config.horizon_url,
                                           retry_count=config.client_retry_count,
                                           retry_interval=config.client_retry_interval,
                                           request_timeout=config.client_request_timeout)
        mint_client = MintLedgerClient(rpc_url=config.solana_rpc_url,
                                       controller_keypair=controller_mint_keypair,
                                       retry_count=config.client_retry_count,
                                       retry_interval=config.client_retry_interval,
                                       request_timeout=config.client_request_timeout)
        return cls(config=config,
                   source_client=source_client,
                   mint_client=mint_client,
                   controller_keypair=Keypair.from_secret(controller_secret),
                   controller_config_keypair=Keypair.from_secret(controller_config_secret),
                   controller_mint_keypair=controller_mint_keypair,
                   selection_strategy=selection_strategy)

    @property
    def accessor(self) -> LedgerAccessor:
        return self._accessor

    async def get_existing_vaults(self) -> List[Vault]:
        return await self._accessor.get_existing_vaults()

    async def get_mint(self, asset: Asset) -> Mint:
        return await self._accessor.get_mint(asset)

    async def create_mint(self, asset: Asset) -> CreateMintResult:
        """
        Creates the wrapped asset mint, with the controller mint key as its first authority, and records its
        address on the controller configuration account. Submits both transactions.
        """
        recorded = await self._accessor.get_recorded_mint_address(asset)
        if recorded is not None:
            raise MintAlreadyExistsError(
                f"Mint {recorded} is already recorded for {asset_canonical_name(asset)}.")
        mint_address = await self._mint_client.create_mint(WRAPPED_ASSET_DECIMALS)

        source_account, base_fee = await safe_gather(
            self._source_client.load_account(self._controller_config_keypair.public_key),
            self._source_client.fetch_base_fee())
        transaction = (
            TransactionBuilder(source_account=source_account,
                               network_passphrase=self._config.network_passphrase,
                               base_fee=base_fee)
            .append_manage_data_op(Controller.mint_attribute_name(asset), mint_address)
            .set_timeout(self._config.transaction_timeout)
            .build()
        )
        transaction.sign(self._controller_config_keypair)
        response = await self._source_client.submit_transaction(transaction.to_xdr())
        self.logger().info(f"Created mint {mint_address} for {asset_canonical_name(asset)}, "
                           f"recorded in source transaction {response['id']}.")
        return CreateMintResult(source_transaction_id=response["id"], mint_address=mint_address)

    async def get_add_validator_to_vault_intent(self, validator: Validator) -> VaultIntent:
        try:
            return await self._registrar.add_validator_to_vault_intent(validator)
        except NoVaultError:
            self.logger().info("No vault exists yet, bootstrapping the first vault.")
            return await self._registrar.bootstrap_vault_intent(validator)

    async def get_add_validator_to_mint_intent(self, validator: Validator, asset: Asset) -> AddValidatorToMintIntent:
        return await self._registrar.add_validator_to_mint_intent(validator, asset)

    async def begin_lock(self, asset: Asset, amount: str, user: User, target_wallet: str) -> BeginLockIntent:
        return await self._driver.begin_lock(asset, amount, user, target_wallet)

    async def begin_mint(self, user: User, escrow_account_id: str) -> BeginMintIntent:
        return await self._driver.begin_mint(user, escrow_account_id)

    async def complete_mint(self, user: User, escrow_account_id: str,
                            mint_transaction_base64: str) -> CompleteMintIntent:
        return await self._driver.complete_mint(user, escrow_account_id, mint_transaction_base64)

    async def complete_lock(self, escrow_account_id: str, mint_transaction_id: str) -> CompleteLockIntent:
        return await self._driver.complete_lock(escrow_account_id, mint_transaction_id)

    async def build_fee_bump_intent(self, inner_transaction_xdr: str, fee_source: str) -> FeeBumpIntent:
        """
        Wraps a signed inner transaction so a third party pays its fee. The outer envelope is returned
        unsigned for the fee source to sign.
        """
        inner = TransactionEnvelope.from_xdr(inner_transaction_xdr, self._config.network_passphrase)
        base_fee = await self._source_client.fetch_base_fee()
        fee_bump = TransactionBuilder.build_fee_bump_transaction(fee_source=fee_source,
                                                                 base_fee=base_fee,
                                                                 inner_transaction_envelope=inner,
                                                                 network_passphrase=self._config.network_passphrase)
        return FeeBumpIntent(transaction_xdr=fee_bump.to_xdr(),
                             fee_source=fee_source,
                             inner_transaction_hash=inner.hash_hex())

    async def close(self):
        await safe_gather(self._source_client.close(), self._mint_client.close())
