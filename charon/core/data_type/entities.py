from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from charon.exceptions import ValidatorAlreadyRegisteredError


@dataclass(frozen=True)
class Validator:
    """
    A custody party holding one key per ledger. Either key may be unknown when the validator was
    reconstructed from only one ledger's account data.
    """
    source_key: Optional[str]
    mint_key: Optional[str]


@dataclass(frozen=True)
class User:
    source_key: str
    mint_key: str


@dataclass(frozen=True)
class Vault:
    """
    Weighted multisig account on the source ledger. Its signers are the controller and `validators`.
    """
    account_id: str
    validators: Tuple[Validator, ...] = field(default_factory=tuple)

    def has_validator(self, source_key: Optional[str]) -> bool:
        return source_key is not None and any(v.source_key == source_key for v in self.validators)

    def with_validator(self, validator: Validator) -> "Vault":
        if self.has_validator(validator.source_key):
            raise ValidatorAlreadyRegisteredError(
                f"Validator {validator.source_key} is already a signer of vault {self.account_id}.")
        return replace(self, validators=self.validators + (validator,))


@dataclass(frozen=True)
class Mint:
    """
    Wrapped asset on the mint ledger. `authority` is either the controller's own key or a multisig
    account whose members are the controller and `validators`.
    """
    mint_address: str
    authority: str
    validators: Tuple[Validator, ...] = field(default_factory=tuple)

    @property
    def is_delegated(self) -> bool:
        return len(self.validators) > 0

    def has_validator(self, mint_key: Optional[str]) -> bool:
        return mint_key is not None and any(v.mint_key == mint_key for v in self.validators)

    @property
    def validator_mint_keys(self) -> Tuple[str, ...]:
        return tuple(v.mint_key for v in self.validators if v.mint_key is not None)
