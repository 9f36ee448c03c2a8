import logging
from typing import List, Optional, Sequence

from stellar_sdk import Asset

from charon.core.data_type.entities import Mint, Validator, Vault
from charon.exceptions import NoVaultError, ValidatorAlreadyRegisteredError, ValidatorNotRegisteredError
from charon.logger import CharonLogger

s_logger = None


class VaultSelectionStrategy:
    """
    Decides which vault takes part in an operation. Subclasses may select by asset, by load or by
    health without changing any caller.
    """

    def accepts_vault(self, account_id: str) -> bool:
        """
        Vault discovery keeps only the accounts accepted here. Any account can add the controller as a
        signer, so deployments that know their vaults should restrict this.
        """
        return True

    def select_for_registration(self, vaults: Sequence[Vault]) -> Vault:
        raise NotImplementedError

    def select_for_lock(self, vaults: Sequence[Vault], asset: Asset, amount: str) -> Vault:
        raise NotImplementedError

    def select_for_release(self, vaults: Sequence[Vault]) -> Vault:
        raise NotImplementedError


class FirstVaultSelectionStrategy(VaultSelectionStrategy):
    """
    Always picks the first known vault.
    """

    def select_for_registration(self, vaults: Sequence[Vault]) -> Vault:
        return vaults[0]

    def select_for_lock(self, vaults: Sequence[Vault], asset: Asset, amount: str) -> Vault:
        return vaults[0]

    def select_for_release(self, vaults: Sequence[Vault]) -> Vault:
        return vaults[0]


class AllowlistVaultSelectionStrategy(FirstVaultSelectionStrategy):
    """
    Only the listed vault accounts take part in the bridge.
    """

    def __init__(self, vault_account_ids: Sequence[str]):
        self._vault_account_ids = frozenset(vault_account_ids)

    def accepts_vault(self, account_id: str) -> bool:
        return account_id in self._vault_account_ids


class Controller:
    """
    Aggregate of the vaults and mints known to the controller identity.

    Instances are rebuilt from ledger state for every operation and are never cached, so membership and
    thresholds cannot drift from what the ledgers hold.
    """

    @classmethod
    def logger(cls) -> CharonLogger:
        global s_logger
        if s_logger is None:
            s_logger = logging.getLogger(__name__)
        return s_logger

    def __init__(self,
                 vaults: Optional[List[Vault]] = None,
                 mints: Optional[List[Mint]] = None,
                 selection_strategy: Optional[VaultSelectionStrategy] = None):
        self._vaults: List[Vault] = list(vaults or [])
        self._mints: List[Mint] = list(mints or [])
        self._selection_strategy = selection_strategy or FirstVaultSelectionStrategy()

    @property
    def vaults(self) -> List[Vault]:
        return list(self._vaults)

    @property
    def mints(self) -> List[Mint]:
        return list(self._mints)

    @staticmethod
    def mint_attribute_name(asset: Asset) -> str:
        return f"w{asset.code}_mint"

    def _require_vaults(self):
        if len(self._vaults) == 0:
            raise NoVaultError("No vault exists yet, a vault must be bootstrapped first.")

    def register_validator_to_vault(self, validator: Validator) -> Vault:
        """
        Adds the validator to the vault chosen by the selection strategy.

        :param validator: the joining validator, its source ledger key is required
        :returns the vault including the new validator
        """
        self._require_vaults()
        if any(vault.has_validator(validator.source_key) for vault in self._vaults):
            raise ValidatorAlreadyRegisteredError(
                f"Validator {validator.source_key} is already registered on a vault.")
        selected = self._selection_strategy.select_for_registration(self._vaults)
        updated = selected.with_validator(validator)
        self._vaults[self._vaults.index(selected)] = updated
        return updated

    def register_validator_to_mint(self, validator: Validator, mint: Mint) -> Mint:
        """
        A validator gains minting power only after it is a signer of some vault.

        :returns the mint including the new validator
        """
        if not any(vault.has_validator(validator.source_key) for vault in self._vaults):
            raise ValidatorNotRegisteredError(
                f"Validator {validator.source_key} is not a signer of any vault.")
        if mint.has_validator(validator.mint_key):
            raise ValidatorAlreadyRegisteredError(
                f"Validator {validator.mint_key} already holds mint authority on {mint.mint_address}.")
        updated = Mint(mint.mint_address, mint.authority, mint.validators + (validator,))
        if mint in self._mints:
            self._mints[self._mints.index(mint)] = updated
        return updated

    def select_vault_for_lock(self, asset: Asset, amount: str) -> Vault:
        self._require_vaults()
        return self._selection_strategy.select_for_lock(self._vaults, asset, amount)

    def select_vault_for_release(self, preferred_account_id: Optional[str] = None) -> Vault:
        """
        Returns the vault recorded at lock time when it is still known, otherwise defers to the strategy.
        """
        self._require_vaults()
        if preferred_account_id is not None:
            for vault in self._vaults:
                if vault.account_id == preferred_account_id:
                    return vault
            self.logger().warning(f"Vault {preferred_account_id} recorded on the escrow account is no longer "
                                  f"known, falling back to vault selection.")
        return self._selection_strategy.select_for_release(self._vaults)

    def find_mint(self, mint_address: str) -> Optional[Mint]:
        for mint in self._mints:
            if mint.mint_address == mint_address:
                return mint
        return None
