"""
Signer weights and thresholds for every multisig structure the bridge creates.

All schemes share one rule: the controller together with a single validator is enough to act, while the
controller alone, any single validator alone, or every validator without the controller is not.
"""
from typing import NamedTuple

from charon.exceptions import SignerSchemeError

# a Stellar account holds at most 20 signers, the master key included when its weight is not zero
MAX_SOURCE_LEDGER_SIGNERS = 20
# SPL token multisig accounts hold at most 11 members
MAX_MINT_MULTISIG_MEMBERS = 11

VALIDATOR_STAKE_CONTROLLER_WEIGHT = 2
VALIDATOR_STAKE_VALIDATOR_WEIGHT = 1
VALIDATOR_STAKE_THRESHOLD = 2

ESCROW_VALIDATOR_WEIGHT = 2
ESCROW_USER_WEIGHT = 1


class WeightedScheme(NamedTuple):
    controller_weight: int
    validator_weight: int
    threshold: int
    user_weight: int = 0

    def reaches_threshold(self, controller: bool = False, validators: int = 0, user: bool = False) -> bool:
        weight = self.validator_weight * validators
        if controller:
            weight += self.controller_weight
        if user:
            weight += self.user_weight
        return weight >= self.threshold


class MultisigScheme(NamedTuple):
    member_count: int
    required_signatures: int


def _check_signer_limit(signer_count: int, description: str):
    if signer_count > MAX_SOURCE_LEDGER_SIGNERS:
        raise SignerSchemeError(f"{description} needs {signer_count} signers, "
                                f"the maximum is {MAX_SOURCE_LEDGER_SIGNERS}.")

def vault_scheme(validator_count: int) -> WeightedScheme:
    """
    Weights of a vault holding `validator_count` validators. The controller weight grows with the validator
    count so the validators together never outweigh it, and the threshold sits exactly one above it.

    With one validator this is the bootstrap 2-of-2 (controller 1, validator 1, threshold 2).
    """
    if validator_count < 1:
        raise SignerSchemeError("A vault needs at least one validator.")
    # the controller plus every validator
    _check_signer_limit(validator_count + 1, f"A vault with {validator_count} validators")
    return WeightedScheme(controller_weight=validator_count,
                          validator_weight=1,
                          threshold=validator_count + 1)


def validator_stake_scheme() -> WeightedScheme:
    """
    Staking escrow of a joining validator: the controller config key alone can reclaim the stake, the
    validator key is a co-signer that cannot act alone.
    """
    return WeightedScheme(controller_weight=VALIDATOR_STAKE_CONTROLLER_WEIGHT,
                          validator_weight=VALIDATOR_STAKE_VALIDATOR_WEIGHT,
                          threshold=VALIDATOR_STAKE_THRESHOLD)


def escrow_scheme(validator_count: int) -> WeightedScheme:
    """
    Escrow transaction account signed over to the vault's validators and the controller. The user keeps a
    signer entry below every threshold and reclaims through the claimable balance predicate instead.
    """
    if validator_count < 1:
        raise SignerSchemeError("An escrow account needs at least one vault validator.")
    # the controller, the user and every validator
    _check_signer_limit(validator_count + 2, f"An escrow account for {validator_count} validators")
    controller_weight = ESCROW_VALIDATOR_WEIGHT * validator_count
    return WeightedScheme(controller_weight=controller_weight,
                          validator_weight=ESCROW_VALIDATOR_WEIGHT,
                          threshold=controller_weight + ESCROW_VALIDATOR_WEIGHT,
                          user_weight=ESCROW_USER_WEIGHT)


def mint_multisig_scheme(validator_count: int) -> MultisigScheme:
    """
    Mint authority multisig for `validator_count` validators plus the controller. The controller and all
    but one validator must sign.
    """
    if validator_count < 1:
        raise SignerSchemeError("A mint multisig needs at least one validator.")
    member_count = validator_count + 1
    if member_count > MAX_MINT_MULTISIG_MEMBERS:
        raise SignerSchemeError(
            f"A mint multisig holds at most {MAX_MINT_MULTISIG_MEMBERS - 1} validators, got {validator_count}.")
    return MultisigScheme(member_count=member_count, required_signatures=validator_count)
