"""
Builders for the SPL token transactions the bridge prepares. Signatures are collected incrementally: the
controller signs here, every other member signs out of band before broadcast.
"""
import base64
from typing import List, Optional, Sequence

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import CreateAccountParams, create_account
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    AuthorityType,
    InitializeMultisigParams,
    MintToParams,
    SetAuthorityParams,
    initialize_multisig,
    mint_to,
    set_authority,
)

from charon.ledger.mint.solana_client import MULTISIG_SIZE


def _pubkeys(keys: Sequence[str]) -> List[Pubkey]:
    return [Pubkey.from_string(key) for key in keys]


def build_reassign_mint_authority_message(payer: str,
                                          mint_address: str,
                                          current_authority: str,
                                          current_signers: Sequence[str],
                                          multisig_address: str,
                                          members: Sequence[str],
                                          required_signatures: int,
                                          rent_lamports: int,
                                          recent_blockhash: Hash) -> Message:
    """
    Creates a multisig account with the given members and hands the mint authority over to it.

    :param current_signers: members of the current authority multisig, empty when the authority is a wallet
    """
    payer_key = Pubkey.from_string(payer)
    multisig_key = Pubkey.from_string(multisig_address)
    instructions = [
        create_account(CreateAccountParams(from_pubkey=payer_key,
                                           to_pubkey=multisig_key,
                                           lamports=rent_lamports,
                                           space=MULTISIG_SIZE,
                                           owner=TOKEN_PROGRAM_ID)),
        initialize_multisig(InitializeMultisigParams(program_id=TOKEN_PROGRAM_ID,
                                                     multisig=multisig_key,
                                                     m=required_signatures,
                                                     signers=_pubkeys(members))),
        set_authority(SetAuthorityParams(program_id=TOKEN_PROGRAM_ID,
                                         account=Pubkey.from_string(mint_address),
                                         authority=AuthorityType.MINT_TOKENS,
                                         current_authority=Pubkey.from_string(current_authority),
                                         signers=_pubkeys(current_signers),
                                         new_authority=multisig_key)),
    ]
    return Message.new_with_blockhash(instructions, payer_key, recent_blockhash)


def build_mint_to_message(payer: str,
                          mint_address: str,
                          destination: str,
                          mint_authority: str,
                          signers: Sequence[str],
                          amount: int,
                          recent_blockhash: Hash) -> Message:
    payer_key = Pubkey.from_string(payer)
    instruction = mint_to(MintToParams(program_id=TOKEN_PROGRAM_ID,
                                       mint=Pubkey.from_string(mint_address),
                                       dest=Pubkey.from_string(destination),
                                       mint_authority=Pubkey.from_string(mint_authority),
                                       amount=amount,
                                       signers=_pubkeys(signers)))
    return Message.new_with_blockhash([instruction], payer_key, recent_blockhash)


def required_signers(message: Message) -> List[Pubkey]:
    return list(message.account_keys[:message.header.num_required_signatures])


def signer_index(message: Message, key: Pubkey) -> Optional[int]:
    signers = required_signers(message)
    return signers.index(key) if key in signers else None


def sign_message(message: Message, keypair: Keypair) -> Signature:
    return keypair.sign_message(bytes(message))


def with_signatures(message: Message,
                    signatures: Sequence[Signature],
                    keypairs: Sequence[Keypair] = ()) -> Transaction:
    """
    Places a signature from each keypair in its signer slot, keeping the other slots as given.
    """
    slots = list(signatures)
    for keypair in keypairs:
        index = signer_index(message, keypair.pubkey())
        if index is None:
            raise ValueError(f"{keypair.pubkey()} is not a required signer of the message.")
        slots[index] = sign_message(message, keypair)
    return Transaction.populate(message, slots)


def unsigned_transaction(message: Message, keypairs: Sequence[Keypair] = ()) -> Transaction:
    empty = [Signature.default()] * message.header.num_required_signatures
    return with_signatures(message, empty, keypairs)


def serialize_transaction(transaction: Transaction) -> str:
    return base64.b64encode(bytes(transaction)).decode("ascii")


def deserialize_transaction(transaction_base64: str) -> Transaction:
    return Transaction.from_bytes(base64.b64decode(transaction_base64))
