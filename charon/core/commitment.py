import hashlib
import hmac
from typing import Iterable

from charon.exceptions import SignatureCommitmentMismatchError


def signature_commitment(signature: bytes) -> str:
    """
    Hex encoded SHA-256 of the raw signature bytes. This is the value stored as `target_transaction_id`
    on the escrow account.
    """
    return hashlib.sha256(bytes(signature)).hexdigest()


def matches_commitment(commitment: str, signature: bytes) -> bool:
    return hmac.compare_digest(signature_commitment(signature).encode(), commitment.lower().encode())


def verify_commitment(commitment: str, signature: bytes):
    if not matches_commitment(commitment, signature):
        raise SignatureCommitmentMismatchError(
            "Signature mismatch. The escrow account commitment and the mint transaction signature do not match.")


def verify_any_commitment(commitment: str, signatures: Iterable[bytes]):
    """
    A finalized mint transaction is accepted when one of its signatures is the committed one.
    """
    if not any(matches_commitment(commitment, signature) for signature in signatures):
        raise SignatureCommitmentMismatchError(
            "Invalid transaction. None of its signatures match the escrow account commitment.")
