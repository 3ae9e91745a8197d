"""
Transaction validation and classification.

Every check runs and every problem is reported; nothing here raises on a
malformed transaction.

Native transfers are decoded from a fixed layout: a little-endian u64 amount at
byte offset 4 with the recipient as the second account. The instruction
discriminator is not checked, so any system instruction shaped like a transfer
is reported as one.
"""

import struct
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from phone_sim.transaction import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    Transaction,
    TransactionInstruction,
    is_valid_pubkey,
)

BASE_FEE_LAMPORTS = 5000
PER_INSTRUCTION_FEE_LAMPORTS = 1000
HIGH_VALUE_THRESHOLD = 1_000_000_000

_TOKEN_PROGRAMS = (TOKEN_PROGRAM_ID, ASSOCIATED_TOKEN_PROGRAM_ID)


class TransactionType(str, Enum):
    TRANSFER = "transfer"
    TOKEN_TRANSFER = "token_transfer"
    PROGRAM_INTERACTION = "program_interaction"
    ACCOUNT_CREATION = "account_creation"
    UNKNOWN = "unknown"


_RISKY_TYPES = (
    TransactionType.PROGRAM_INTERACTION,
    TransactionType.UNKNOWN,
    TransactionType.TOKEN_TRANSFER,
)


class TransactionMetadata(BaseModel):
    instruction_count: int = 0
    account_count: int = 0
    estimated_fee: int = 0
    program_ids: List[str] = Field(default_factory=list)
    has_system_program: bool = False
    has_token_program: bool = False
    transfer_amount: Optional[int] = Field(default=None, description="Lamports, simple transfers only")
    recipient: Optional[str] = None
    type: TransactionType = TransactionType.UNKNOWN


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    metadata: TransactionMetadata = Field(default_factory=TransactionMetadata)


def validate_transaction(transaction: Optional[Transaction]) -> ValidationResult:
    """Check structure, extract metadata and run the type-specific checks."""
    if transaction is None:
        return ValidationResult(is_valid=False, errors=["Transaction is null or undefined"])

    errors: List[str] = []
    warnings: List[str] = []
    instructions = list(transaction.instructions or [])

    if not instructions:
        errors.append("Transaction has no instructions")

    if not transaction.fee_payer:
        errors.append("Transaction has no fee payer")
    elif not is_valid_pubkey(transaction.fee_payer):
        errors.append("Transaction fee payer is not a valid public key")

    if not transaction.recent_blockhash:
        warnings.append("Transaction has no recent blockhash (may be set later)")

    errors.extend(_validate_instructions(instructions))

    metadata = extract_metadata(transaction)
    errors.extend(_validate_by_type(metadata))

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings, metadata=metadata)


def _validate_instructions(instructions: Iterable[Optional[TransactionInstruction]]) -> List[str]:
    errors: List[str] = []
    for i, instruction in enumerate(instructions):
        if instruction is None:
            errors.append(f"Instruction {i} is null")
            continue
        if not instruction.program_id:
            errors.append(f"Instruction {i} has no program ID")
            continue
        if not is_valid_pubkey(instruction.program_id):
            errors.append(f"Instruction {i} has an invalid program ID")
            continue
        if instruction.keys is None:
            errors.append(f"Instruction {i} has no account keys")
            continue

        for j, key in enumerate(instruction.keys):
            if key is None or not key.pubkey:
                errors.append(f"Instruction {i}, key {j} has no public key")
                continue
            if not is_valid_pubkey(key.pubkey):
                errors.append(f"Instruction {i}, key {j} has an invalid public key")
            if not isinstance(key.is_signer, bool):
                errors.append(f"Instruction {i}, key {j} has invalid is_signer flag")
            if not isinstance(key.is_writable, bool):
                errors.append(f"Instruction {i}, key {j} has invalid is_writable flag")

        if not isinstance(instruction.data, (bytes, bytearray)):
            errors.append(f"Instruction {i} has invalid data")
    return errors


def extract_metadata(transaction: Transaction) -> TransactionMetadata:
    instructions = [ix for ix in (transaction.instructions or []) if ix is not None]
    program_ids: List[str] = []
    account_count = 0
    has_system = has_token = False
    transfer_amount: Optional[int] = None
    recipient: Optional[str] = None

    for instruction in instructions:
        if not instruction.program_id:
            continue
        if instruction.program_id not in program_ids:
            program_ids.append(instruction.program_id)

        if instruction.program_id == SYSTEM_PROGRAM_ID:
            has_system = True
            decoded = _decode_system_transfer(instruction)
            if decoded:
                transfer_amount, recipient = decoded
        if instruction.program_id in _TOKEN_PROGRAMS:
            has_token = True

        account_count += len(instruction.keys or [])

    return TransactionMetadata(
        instruction_count=len(transaction.instructions or []),
        account_count=account_count,
        estimated_fee=estimate_fee(transaction),
        program_ids=program_ids,
        has_system_program=has_system,
        has_token_program=has_token,
        transfer_amount=transfer_amount,
        recipient=recipient,
        type=classify(program_ids, has_system, has_token, transfer_amount is not None),
    )


def _decode_system_transfer(instruction: TransactionInstruction) -> Optional[Tuple[int, str]]:
    keys = instruction.keys or []
    data = instruction.data
    if len(keys) < 2 or not isinstance(data, (bytes, bytearray)) or len(data) < 12:
        return None
    recipient = keys[1].pubkey if keys[1] is not None else None
    (amount,) = struct.unpack_from("<Q", data, 4)
    if recipient and amount > 0:
        return amount, recipient
    return None


def classify(
    program_ids: List[str], has_system: bool, has_token: bool, has_transfer_amount: bool
) -> TransactionType:
    if has_token:
        return TransactionType.TOKEN_TRANSFER
    if has_system and len(program_ids) == 1:
        return TransactionType.TRANSFER if has_transfer_amount else TransactionType.ACCOUNT_CREATION
    if len(program_ids) > 1 or not has_system:
        return TransactionType.PROGRAM_INTERACTION
    return TransactionType.UNKNOWN


def estimate_fee(transaction: Transaction) -> int:
    # Heuristic, not a network quote.
    return BASE_FEE_LAMPORTS + len(transaction.instructions or []) * PER_INSTRUCTION_FEE_LAMPORTS


def _validate_by_type(metadata: TransactionMetadata) -> List[str]:
    errors: List[str] = []
    if metadata.type is TransactionType.TRANSFER:
        if not metadata.transfer_amount or metadata.transfer_amount <= 0:
            errors.append("Transfer transaction has invalid amount")
        if not metadata.recipient:
            errors.append("Transfer transaction has no recipient")
    elif metadata.type is TransactionType.TOKEN_TRANSFER:
        if not metadata.has_token_program:
            errors.append("Token transfer transaction missing token program")
    elif metadata.type is TransactionType.PROGRAM_INTERACTION:
        if not metadata.program_ids and metadata.instruction_count:
            errors.append("Program interaction transaction has no program IDs")
    return errors


def requires_user_approval(metadata: TransactionMetadata, high_value_threshold: int = HIGH_VALUE_THRESHOLD) -> bool:
    """High-value transfers and anything beyond a plain transfer or account creation."""
    if metadata.transfer_amount and metadata.transfer_amount > high_value_threshold:
        return True
    return metadata.type in _RISKY_TYPES


def format_transaction_for_display(metadata: TransactionMetadata) -> str:
    lines = [
        f"Transaction Type: {metadata.type.value.replace('_', ' ').upper()}",
        f"Instructions: {metadata.instruction_count}",
        f"Estimated Fee: {metadata.estimated_fee} lamports",
    ]
    if metadata.transfer_amount:
        lines.append(f"Amount: {metadata.transfer_amount} lamports")
    if metadata.recipient:
        lines.append(f"Recipient: {metadata.recipient}")
    lines.append(f"Programs: {', '.join(metadata.program_ids)}")
    return "\n".join(lines)
