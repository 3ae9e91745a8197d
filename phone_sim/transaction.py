"""
Solana-shaped transaction model used by the validator, the vault and the
wallet-adapter service.

The classes are plain dataclasses with no runtime coercion: a malformed
transaction handed over by a dApp must reach the validator as-is so that every
problem can be reported instead of failing on construction.
"""

from __future__ import annotations

import copy
import struct
from dataclasses import dataclass, field
from typing import List, Optional

import base58
from solders.pubkey import Pubkey

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"

# Filled in when a dApp leaves the blockhash for the wallet to set.
PLACEHOLDER_BLOCKHASH = "EkSnNWid2cvwEVnVx9aBqawnmiCNiDgp3gUdkDPTKN1N"

_SYSTEM_TRANSFER_INDEX = 2
_EMPTY_KEY = bytes(32)


@dataclass
class AccountMeta:
    pubkey: Optional[str]
    is_signer: bool = False
    is_writable: bool = False


@dataclass
class TransactionInstruction:
    program_id: Optional[str]
    keys: Optional[List[AccountMeta]] = field(default_factory=list)
    data: bytes = b""


@dataclass
class SignaturePair:
    public_key: str
    signature: bytes


@dataclass
class Transaction:
    fee_payer: Optional[str] = None
    recent_blockhash: Optional[str] = None
    instructions: List[TransactionInstruction] = field(default_factory=list)
    signatures: List[SignaturePair] = field(default_factory=list)

    def add(self, *instructions: TransactionInstruction) -> "Transaction":
        self.instructions.extend(instructions)
        return self

    @property
    def is_signed(self) -> bool:
        return bool(self.signatures)

    def copy(self) -> "Transaction":
        return copy.deepcopy(self)

    def serialize_message(self) -> bytes:
        """
        Encode the signable part of the transaction.

        Layout: fee payer (32) | blockhash (32) | u16 instruction count, then per
        instruction: program id (32) | u8 key count | keys (32 + flag byte each)
        | u16 data length | data.

        Raises:
            ValueError: If a key or the blockhash is not valid base58, or a
                count or length does not fit its field.
        """
        parts = [
            _pubkey_bytes(self.fee_payer),
            _blockhash_bytes(self.recent_blockhash),
            _pack_count("<H", len(self.instructions), "instructions"),
        ]
        for instruction in self.instructions:
            keys = instruction.keys or []
            parts.append(_pubkey_bytes(instruction.program_id))
            parts.append(_pack_count("<B", len(keys), "instruction keys"))
            for meta in keys:
                flags = (1 if meta.is_signer else 0) | (2 if meta.is_writable else 0)
                parts.append(_pubkey_bytes(meta.pubkey))
                parts.append(struct.pack("<B", flags))
            data = bytes(instruction.data or b"")
            parts.append(_pack_count("<H", len(data), "instruction data bytes"))
            parts.append(data)
        return b"".join(parts)


def system_transfer(from_pubkey: str, to_pubkey: str, lamports: int) -> TransactionInstruction:
    """Build a native SOL transfer instruction on the system program."""
    if lamports < 0:
        raise ValueError("lamports must be non-negative")
    return TransactionInstruction(
        program_id=SYSTEM_PROGRAM_ID,
        keys=[
            AccountMeta(pubkey=from_pubkey, is_signer=True, is_writable=True),
            AccountMeta(pubkey=to_pubkey, is_signer=False, is_writable=True),
        ],
        data=struct.pack("<IQ", _SYSTEM_TRANSFER_INDEX, lamports),
    )


def is_valid_pubkey(value: object) -> bool:
    if not isinstance(value, str) or not value:
        return False
    try:
        Pubkey.from_string(value)
    except Exception:
        return False
    return True


def _pack_count(fmt: str, count: int, what: str) -> bytes:
    limit = (1 << (8 * struct.calcsize(fmt))) - 1
    if count > limit:
        raise ValueError(f"Too many {what}: {count} (max {limit})")
    return struct.pack(fmt, count)


def _pubkey_bytes(value: Optional[str]) -> bytes:
    if value is None:
        return _EMPTY_KEY
    try:
        return bytes(Pubkey.from_string(value))
    except Exception as exc:
        raise ValueError(f"Invalid public key: {value!r}") from exc


def _blockhash_bytes(value: Optional[str]) -> bytes:
    if not value:
        return _EMPTY_KEY
    raw = base58.b58decode(value)
    if len(raw) != 32:
        raise ValueError(f"Blockhash must decode to 32 bytes, got {len(raw)}")
    return raw
