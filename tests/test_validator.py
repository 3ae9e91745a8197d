import struct

import pytest
from solders.keypair import Keypair

from phone_sim.mwa.validator import (
    TransactionType,
    estimate_fee,
    format_transaction_for_display,
    requires_user_approval,
    validate_transaction,
)
from phone_sim.transaction import (
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    AccountMeta,
    Transaction,
    TransactionInstruction,
    system_transfer,
)


def new_key() -> str:
    return str(Keypair().pubkey())


@pytest.fixture
def payer():
    return new_key()


def test_valid_transfer(payer, recipient, make_transfer):
    result = validate_transaction(make_transfer(payer, 5_000_000))

    assert result.is_valid
    assert result.errors == [] and result.warnings == []
    metadata = result.metadata
    assert metadata.type is TransactionType.TRANSFER
    assert metadata.transfer_amount == 5_000_000
    assert metadata.recipient == recipient
    assert metadata.program_ids == [SYSTEM_PROGRAM_ID]
    assert metadata.has_system_program and not metadata.has_token_program
    assert metadata.instruction_count == 1
    assert metadata.account_count == 2
    assert metadata.estimated_fee == 6000


def test_null_transaction():
    result = validate_transaction(None)
    assert not result.is_valid
    assert result.errors == ["Transaction is null or undefined"]


def test_every_structural_problem_is_reported():
    result = validate_transaction(Transaction())
    assert not result.is_valid
    assert "Transaction has no instructions" in result.errors
    assert "Transaction has no fee payer" in result.errors
    assert result.warnings


def test_invalid_fee_payer(recipient):
    tx = Transaction(fee_payer="not a key").add(system_transfer(new_key(), recipient, 10))
    result = validate_transaction(tx)
    assert "Transaction fee payer is not a valid public key" in result.errors


def test_missing_blockhash_is_only_a_warning(payer, make_transfer):
    result = validate_transaction(make_transfer(payer, blockhash=None))
    assert result.is_valid
    assert result.warnings == ["Transaction has no recent blockhash (may be set later)"]


def test_instruction_problems(payer):
    tx = Transaction(fee_payer=payer).add(
        TransactionInstruction(program_id=None),
        TransactionInstruction(program_id=new_key(), keys=[AccountMeta(pubkey=None)]),
        TransactionInstruction(
            program_id=new_key(),
            keys=[AccountMeta(pubkey="bogus"), AccountMeta(pubkey=new_key(), is_signer="yes", is_writable=1)],
            data="text",
        ),
        TransactionInstruction(program_id=new_key(), keys=None),
    )

    errors = validate_transaction(tx).errors

    assert "Instruction 0 has no program ID" in errors
    assert "Instruction 1, key 0 has no public key" in errors
    assert "Instruction 2, key 0 has an invalid public key" in errors
    assert "Instruction 2, key 1 has invalid is_signer flag" in errors
    assert "Instruction 2, key 1 has invalid is_writable flag" in errors
    assert "Instruction 2 has invalid data" in errors
    assert "Instruction 3 has no account keys" in errors


def test_token_program_is_token_transfer(payer):
    tx = Transaction(fee_payer=payer).add(
        TransactionInstruction(
            program_id=TOKEN_PROGRAM_ID,
            keys=[AccountMeta(new_key(), False, True), AccountMeta(new_key(), False, True)],
            data=bytes([3]) + struct.pack("<Q", 10),
        )
    )
    result = validate_transaction(tx)

    assert result.is_valid
    assert result.metadata.type is TransactionType.TOKEN_TRANSFER
    assert result.metadata.has_token_program
    assert requires_user_approval(result.metadata)


def test_short_system_instruction_is_account_creation(payer):
    tx = Transaction(fee_payer=payer).add(
        TransactionInstruction(program_id=SYSTEM_PROGRAM_ID, keys=[AccountMeta(payer, True, True)], data=b"\x00" * 4)
    )
    metadata = validate_transaction(tx).metadata

    assert metadata.type is TransactionType.ACCOUNT_CREATION
    assert metadata.transfer_amount is None
    assert not requires_user_approval(metadata)


def test_unknown_program_is_program_interaction(payer):
    tx = Transaction(fee_payer=payer).add(
        TransactionInstruction(program_id=new_key(), keys=[AccountMeta(payer, True, True)], data=b"\x01")
    )
    metadata = validate_transaction(tx).metadata
    assert metadata.type is TransactionType.PROGRAM_INTERACTION
    assert requires_user_approval(metadata)


def test_mixed_programs_are_program_interaction(payer, recipient):
    tx = Transaction(fee_payer=payer).add(
        system_transfer(payer, recipient, 1000),
        TransactionInstruction(program_id=new_key(), keys=[], data=b""),
    )
    metadata = validate_transaction(tx).metadata

    assert metadata.type is TransactionType.PROGRAM_INTERACTION
    assert len(metadata.program_ids) == 2
    assert metadata.transfer_amount == 1000
    assert metadata.estimated_fee == 7000


def test_duplicate_program_ids_are_listed_once(payer, recipient):
    tx = Transaction(fee_payer=payer).add(system_transfer(payer, recipient, 1), system_transfer(payer, recipient, 2))
    metadata = validate_transaction(tx).metadata
    assert metadata.program_ids == [SYSTEM_PROGRAM_ID]
    assert metadata.type is TransactionType.TRANSFER


def test_transfer_layout_is_decoded_without_discriminator_check(payer, recipient):
    # A system instruction whose first four bytes are not the transfer index.
    data = struct.pack("<IQ", 0, 42) + bytes(40)
    tx = Transaction(fee_payer=payer).add(
        TransactionInstruction(
            program_id=SYSTEM_PROGRAM_ID,
            keys=[AccountMeta(payer, True, True), AccountMeta(recipient, True, True)],
            data=data,
        )
    )
    metadata = validate_transaction(tx).metadata
    assert metadata.type is TransactionType.TRANSFER
    assert metadata.transfer_amount == 42


@pytest.mark.parametrize(
    "lamports, expected",
    [(1_000_000_000, False), (1_000_000_001, True), (1, False)],
)
def test_high_value_threshold(payer, make_transfer, lamports, expected):
    metadata = validate_transaction(make_transfer(payer, lamports)).metadata
    assert requires_user_approval(metadata) is expected


def test_custom_high_value_threshold(payer, make_transfer):
    metadata = validate_transaction(make_transfer(payer, 500)).metadata
    assert requires_user_approval(metadata, high_value_threshold=100)


@pytest.mark.parametrize("count", [0, 1, 4])
def test_estimate_fee(payer, recipient, count):
    tx = Transaction(fee_payer=payer)
    for _ in range(count):
        tx.add(system_transfer(payer, recipient, 1))
    assert estimate_fee(tx) == 5000 + 1000 * count


def test_format_for_display(payer, recipient, make_transfer):
    text = format_transaction_for_display(validate_transaction(make_transfer(payer, 250)).metadata)
    assert "Transaction Type: TRANSFER" in text
    assert "Amount: 250 lamports" in text
    assert f"Recipient: {recipient}" in text
    assert "Estimated Fee: 6000 lamports" in text
