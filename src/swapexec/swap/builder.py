"""Transaction builder for aggregator swap transactions.

Flow:
1. Decode the base64 transaction returned by the aggregator
2. Optionally prepend compute budget directives (limit, then price)
3. Sign with the wallet key

Signing always happens last. A signature only covers the exact message bytes
it was made for, so any instruction rewrite produces a new unsigned
transaction that has to be signed again.

The rewrite works on the compiled message so that version 0 messages keep
their address table lookups. The compute budget program is appended to the
static account keys (read-only, unsigned) when missing; account indexes that
point past the static keys refer to lookup-table accounts and shift by one.
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Optional, Union

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import CompiledInstruction
from solders.keypair import Keypair
from solders.message import Message, MessageHeader, MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from swapexec.errors import MalformedTransaction, SigningFailed

logger = logging.getLogger(__name__)

COMPUTE_BUDGET_PROGRAM_ID = Pubkey.from_string("ComputeBudget111111111111111111111111111111")

# Compute budget instruction discriminators
SET_COMPUTE_UNIT_LIMIT = 2
SET_COMPUTE_UNIT_PRICE = 3

DEFAULT_BASE_COMPUTE_UNITS = 200_000
DEFAULT_COMPUTE_UNITS_PER_INSTRUCTION = 50_000
MAX_COMPUTE_UNITS = 1_400_000
DEFAULT_PRIORITY_FEE = 1000  # micro-lamports per compute unit

AnyMessage = Union[Message, MessageV0]


def derive_compute_unit_limit(
    instruction_count: int,
    base: int = DEFAULT_BASE_COMPUTE_UNITS,
    per_instruction: int = DEFAULT_COMPUTE_UNITS_PER_INSTRUCTION,
    ceiling: int = MAX_COMPUTE_UNITS,
) -> int:
    """Size a compute unit limit from the transaction's instruction count."""
    if instruction_count < 0:
        raise ValueError(f"instruction_count must be >= 0, got {instruction_count}")
    return min(base + per_instruction * instruction_count, ceiling)


@dataclass(frozen=True)
class UnsignedTransaction:
    """A decoded transaction message that carries no valid signature."""

    message: AnyMessage

    @property
    def is_versioned(self) -> bool:
        return isinstance(self.message, MessageV0)

    @property
    def fee_payer(self) -> Pubkey:
        return self.message.account_keys[0]

    @property
    def recent_blockhash(self) -> Hash:
        return self.message.recent_blockhash

    @property
    def instructions(self) -> list[CompiledInstruction]:
        return list(self.message.instructions)

    def program_id(self, instruction: CompiledInstruction) -> Pubkey:
        return self.message.account_keys[instruction.program_id_index]


@dataclass(frozen=True)
class SignedTransaction:
    """A transaction signed by the fee payer, ready for broadcast."""

    transaction: VersionedTransaction

    @property
    def signature(self) -> str:
        """First signature; it identifies the transaction on the network."""
        return str(self.transaction.signatures[0])

    @property
    def message(self) -> AnyMessage:
        return self.transaction.message

    @property
    def fee_payer(self) -> Pubkey:
        return self.transaction.message.account_keys[0]

    @property
    def recent_blockhash(self) -> Hash:
        return self.transaction.message.recent_blockhash

    def to_bytes(self) -> bytes:
        return bytes(self.transaction)

    def to_base64(self) -> str:
        return base64.b64encode(self.to_bytes()).decode()


def _rebuild_message(
    message: AnyMessage,
    header: MessageHeader,
    account_keys: list[Pubkey],
    instructions: list[CompiledInstruction],
    recent_blockhash: Hash,
) -> AnyMessage:
    """Rebuild a message of the same version with new parts."""
    if isinstance(message, MessageV0):
        return MessageV0(
            header,
            account_keys,
            recent_blockhash,
            instructions,
            list(message.address_table_lookups),
        )
    return Message.new_with_compiled_instructions(
        header.num_required_signatures,
        header.num_readonly_signed_accounts,
        header.num_readonly_unsigned_accounts,
        account_keys,
        recent_blockhash,
        instructions,
    )


def _is_compute_directive(tx: UnsignedTransaction, instruction: CompiledInstruction) -> bool:
    data = bytes(instruction.data)
    return (
        tx.program_id(instruction) == COMPUTE_BUDGET_PROGRAM_ID
        and len(data) > 0
        and data[0] in (SET_COMPUTE_UNIT_LIMIT, SET_COMPUTE_UNIT_PRICE)
    )


class TransactionBuilder:
    """Decodes, augments and signs aggregator transactions."""

    def __init__(
        self,
        keypair: Optional[Keypair] = None,
        default_priority_fee: int = DEFAULT_PRIORITY_FEE,
        base_compute_units: int = DEFAULT_BASE_COMPUTE_UNITS,
        compute_units_per_instruction: int = DEFAULT_COMPUTE_UNITS_PER_INSTRUCTION,
        max_compute_units: int = MAX_COMPUTE_UNITS,
    ):
        self.keypair = keypair
        self.default_priority_fee = default_priority_fee
        self.base_compute_units = base_compute_units
        self.compute_units_per_instruction = compute_units_per_instruction
        self.max_compute_units = max_compute_units

    def decode(self, payload: str) -> UnsignedTransaction:
        """Decode a base64 transaction envelope.

        Raises:
            MalformedTransaction: on base64 or binary layout errors
        """
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise MalformedTransaction(f"Invalid base64 transaction payload: {e}") from e

        try:
            tx = VersionedTransaction.from_bytes(raw)
        except Exception as e:
            raise MalformedTransaction(f"Invalid transaction layout: {e}") from e

        unsigned = UnsignedTransaction(tx.message)
        logger.debug(
            f"Decoded transaction (versioned={unsigned.is_versioned}, "
            f"instructions={len(unsigned.instructions)}, fee_payer={unsigned.fee_payer})"
        )
        return unsigned

    def derive_compute_unit_limit(self, instruction_count: int) -> int:
        return derive_compute_unit_limit(
            instruction_count,
            base=self.base_compute_units,
            per_instruction=self.compute_units_per_instruction,
            ceiling=self.max_compute_units,
        )

    def inject_compute_directives(
        self,
        tx: UnsignedTransaction,
        compute_unit_limit: Optional[int] = None,
        priority_fee: Optional[int] = None,
    ) -> UnsignedTransaction:
        """Prepend compute unit limit and price instructions.

        Returns the transaction unchanged when neither directive is requested.
        Existing limit/price directives in the payload are superseded.
        """
        if compute_unit_limit is None and priority_fee is None:
            return tx

        limit = compute_unit_limit
        if limit is None:
            limit = self.derive_compute_unit_limit(len(tx.instructions))
        price = priority_fee if priority_fee is not None else self.default_priority_fee

        message = tx.message
        header = message.header
        account_keys = list(message.account_keys)
        static_count = len(account_keys)

        if COMPUTE_BUDGET_PROGRAM_ID in account_keys:
            budget_index = account_keys.index(COMPUTE_BUDGET_PROGRAM_ID)
            shift = 0
        else:
            account_keys.append(COMPUTE_BUDGET_PROGRAM_ID)
            budget_index = static_count
            shift = 1
            header = MessageHeader(
                header.num_required_signatures,
                header.num_readonly_signed_accounts,
                header.num_readonly_unsigned_accounts + 1,
            )

        def remap(index: int) -> int:
            return index + shift if index >= static_count else index

        instructions = [
            CompiledInstruction(budget_index, bytes(set_compute_unit_limit(limit).data), b""),
            CompiledInstruction(budget_index, bytes(set_compute_unit_price(price).data), b""),
        ]
        superseded = 0
        for ix in tx.instructions:
            if _is_compute_directive(tx, ix):
                superseded += 1
                continue
            instructions.append(
                CompiledInstruction(
                    remap(ix.program_id_index),
                    bytes(ix.data),
                    bytes(remap(index) for index in bytes(ix.accounts)),
                )
            )

        if superseded:
            logger.info(f"Replaced {superseded} existing compute budget instruction(s)")
        logger.info(f"Added compute budget: {limit} CU limit, {price} microlamports priority fee")

        new_message = _rebuild_message(message, header, account_keys, instructions, message.recent_blockhash)
        return UnsignedTransaction(new_message)

    def sign(
        self,
        tx: UnsignedTransaction,
        keypair: Optional[Keypair] = None,
        blockhash: Optional[Union[Hash, str]] = None,
    ) -> SignedTransaction:
        """Sign a transaction, optionally binding it to a new blockhash.

        Raises:
            SigningFailed: on missing or mismatched key material
        """
        keypair = keypair or self.keypair
        if keypair is None:
            raise SigningFailed("No wallet keypair available for signing")

        message = tx.message
        if blockhash is not None:
            if isinstance(blockhash, str):
                try:
                    blockhash = Hash.from_string(blockhash)
                except ValueError as e:
                    raise SigningFailed(f"Invalid blockhash {blockhash!r}: {e}") from e
            if blockhash != message.recent_blockhash:
                message = _rebuild_message(
                    message,
                    message.header,
                    list(message.account_keys),
                    list(message.instructions),
                    blockhash,
                )

        if message.account_keys[0] != keypair.pubkey():
            raise SigningFailed(
                f"Fee payer {message.account_keys[0]} does not match wallet {keypair.pubkey()}"
            )
        required = message.header.num_required_signatures
        if required != 1:
            raise SigningFailed(f"Transaction requires {required} signatures; only the fee payer can sign")

        try:
            signed = VersionedTransaction(message, [keypair])
        except Exception as e:
            raise SigningFailed(f"Failed to sign transaction: {e}") from e

        logger.info(f"Transaction signed: {signed.signatures[0]}")
        return SignedTransaction(signed)

    def prepare(
        self,
        payload: str,
        compute_unit_limit: Optional[int] = None,
        priority_fee: Optional[int] = None,
        keypair: Optional[Keypair] = None,
    ) -> SignedTransaction:
        """Decode, augment and sign an aggregator transaction."""
        tx = self.decode(payload)
        tx = self.inject_compute_directives(tx, compute_unit_limit, priority_fee)
        return self.sign(tx, keypair)

    @staticmethod
    def encode_for_simulation(tx: UnsignedTransaction) -> str:
        """Encode an unsigned transaction with placeholder signatures.

        Only valid for simulation with signature verification disabled.
        """
        signatures = [Signature.default()] * tx.message.header.num_required_signatures
        populated = VersionedTransaction.populate(tx.message, signatures)
        return base64.b64encode(bytes(populated)).decode()
