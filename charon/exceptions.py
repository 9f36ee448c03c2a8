"""
Exceptions used in the Charon codebase.
"""


class CharonBaseException(Exception):
    """
    Most errors raised in Charon should inherit this class so we can
    differentiate them from errors that come from dependencies.
    """


class NoVaultError(CharonBaseException):
    """
    No vault exists yet. The caller must run the vault bootstrap flow instead.
    """


class ValidatorNotRegisteredError(CharonBaseException):
    """
    The validator is not a signer of any vault, so it cannot join the mint authority
    """


class ValidatorAlreadyRegisteredError(CharonBaseException):
    """
    The validator is already a signer of the vault or of the mint authority
    """


class SignatureCommitmentMismatchError(CharonBaseException):
    """
    A mint ledger transaction signature does not hash to the commitment stored on the escrow account
    """


class LedgerOperationError(CharonBaseException):
    """
    A read or write against one of the ledgers failed
    """


class EscrowStateError(CharonBaseException):
    """
    The escrow transaction account is not in the state required by the requested step
    """


class MintAlreadyExistsError(CharonBaseException):
    """
    A wrapped asset mint is already recorded for the asset
    """


class MintNotFoundError(CharonBaseException):
    """
    No wrapped asset mint is recorded for the asset
    """


class MintAuthorityNotDelegatedError(CharonBaseException):
    """
    The mint authority is still the controller key, no validator multisig holds it yet
    """


class SignerSchemeError(CharonBaseException):
    """
    The requested signer set cannot be expressed within the ledger's weight or member limits
    """
