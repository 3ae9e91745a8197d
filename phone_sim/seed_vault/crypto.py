"""
Crypto engine for the Seed Vault.

- BIP-39 mnemonics via the ``mnemonic`` package
- SLIP-0010 ed25519 derivation (hardened segments only) into solders keypairs
- AES-256-GCM encryption with a PBKDF2-HMAC-SHA256 derived key; payloads are
  ``base64(salt || iv || ciphertext)``
"""

import base64
import hashlib
import hmac
import os
import re
import struct
from typing import Dict, List, Literal, Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from mnemonic import Mnemonic
from solders.keypair import Keypair

from .exceptions import (
    DecryptionFailedError,
    EncryptionFailedError,
    InvalidDerivationPathError,
    InvalidMnemonicError,
)
from .types import DerivationPathComponents

MnemonicStrength = Literal[128, 160, 192, 224, 256]

_SALT_BYTES = 32
_IV_BYTES = 12
_TAG_BYTES = 16
_KEY_BYTES = 32
_KDF_ITERATIONS = 100_000

_ED25519_CURVE_KEY = b"ed25519 seed"
_HARDENED_OFFSET = 0x80000000
_MAX_INDEX = _HARDENED_OFFSET - 1

SOLANA_PURPOSE = 44
SOLANA_COIN_TYPE = 501

_HARDENED_PATH = re.compile(r"^m/(\d+)'/(\d+)'/(\d+)'/(\d+)'/(\d+)'$")
_MIXED_PATH = re.compile(r"^m/(\d+)'/(\d+)'/(\d+)'/(\d+)/(\d+)$")
_SEGMENT = re.compile(r"^(\d+)'$")

_WORDLIST = Mnemonic("english")


# --------------------------------------------------------------------------- #
# Randomness, hashing, identifiers
# --------------------------------------------------------------------------- #
def generate_secure_random(length: int) -> bytes:
    return os.urandom(length)


def hash_data(data: Union[str, bytes]) -> str:
    """SHA-256 hex digest of ``data`` (strings are UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def generate_wallet_id() -> str:
    return hash_data(generate_secure_random(16))[:16]


def generate_deterministic_wallet_id(public_key: str) -> str:
    """Stable id for a public key, so re-importing a mnemonic targets the same record."""
    return hash_data(public_key)[:16]


def generate_session_token() -> str:
    return generate_secure_random(32).hex()


def wipe_sensitive_data(data: Union[bytearray, bytes, str]) -> None:
    """
    Zero-fill a mutable buffer in place.

    ``bytes`` and ``str`` are immutable and cannot be wiped; they are accepted so
    callers can treat every secret uniformly.
    """
    if isinstance(data, bytearray):
        for i in range(len(data)):
            data[i] = 0


# --------------------------------------------------------------------------- #
# Mnemonics and key derivation
# --------------------------------------------------------------------------- #
def generate_mnemonic(strength: MnemonicStrength = 128) -> str:
    if strength not in (128, 160, 192, 224, 256):
        raise ValueError(f"Unsupported mnemonic strength: {strength}")
    return _WORDLIST.generate(strength=strength)


def validate_mnemonic(mnemonic: str) -> bool:
    """Check word count, wordlist membership and checksum."""
    if not isinstance(mnemonic, str) or not mnemonic.strip():
        return False
    words = mnemonic.split()
    if len(words) not in (12, 15, 18, 21, 24):
        return False
    try:
        return _WORDLIST.check(" ".join(words))
    except (ValueError, LookupError):
        return False


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    if not validate_mnemonic(mnemonic):
        raise InvalidMnemonicError("Invalid mnemonic phrase")
    return Mnemonic.to_seed(" ".join(mnemonic.split()), passphrase)


def _derive_slip10(seed: bytes, path: str) -> bytes:
    if not path.startswith("m"):
        raise ValueError(f"Derivation path must start with 'm': {path}")
    segments = path.split("/")[1:]
    if path != "m" and not segments:
        raise ValueError(f"Malformed derivation path: {path}")

    digest = hmac.new(_ED25519_CURVE_KEY, seed, hashlib.sha512).digest()
    key, chain_code = digest[:32], digest[32:]
    for segment in segments:
        match = _SEGMENT.match(segment)
        if not match:
            raise ValueError(f"ed25519 derivation supports hardened segments only, got '{segment}'")
        index = int(match.group(1))
        if index > _MAX_INDEX:
            raise ValueError(f"Derivation index out of range: {index}")
        data = b"\x00" + key + struct.pack(">I", index + _HARDENED_OFFSET)
        digest = hmac.new(chain_code, data, hashlib.sha512).digest()
        key, chain_code = digest[:32], digest[32:]
    return key


def derive_keypair_from_seed(seed: bytes, derivation_path: str) -> Keypair:
    """Same (seed, path) always yields the same keypair."""
    try:
        return Keypair.from_seed(_derive_slip10(seed, derivation_path))
    except ValueError as exc:
        raise InvalidDerivationPathError(
            f"Failed to derive keypair: {exc}", {"derivation_path": derivation_path}
        ) from exc


def derive_keypair_from_mnemonic(mnemonic: str, derivation_path: str, passphrase: str = "") -> Keypair:
    seed = mnemonic_to_seed(mnemonic, passphrase)
    return derive_keypair_from_seed(seed, derivation_path)


# --------------------------------------------------------------------------- #
# Derivation paths
# --------------------------------------------------------------------------- #
def parse_derivation_path(path: str) -> DerivationPathComponents:
    """
    Parse a five-level BIP-44 path.

    Accepts the fully hardened form and the mixed form in which the change and
    address levels are unmarked.
    """
    match = _HARDENED_PATH.match(path or "") or _MIXED_PATH.match(path or "")
    if not match:
        raise InvalidDerivationPathError(f"Invalid derivation path format: {path}", {"derivation_path": path})
    purpose, coin_type, account, change, address_index = (int(g) for g in match.groups())
    return DerivationPathComponents(
        purpose=purpose,
        coin_type=coin_type,
        account=account,
        change=change,
        address_index=address_index,
    )


def format_derivation_path(components: DerivationPathComponents) -> str:
    # All levels hardened; ed25519 has no public derivation.
    return (
        f"m/{components.purpose}'/{components.coin_type}'/{components.account}'"
        f"/{components.change}'/{components.address_index}'"
    )


def generate_solana_derivation_path(account: int = 0, change: int = 0, address_index: int = 0) -> str:
    return format_derivation_path(
        DerivationPathComponents(account=account, change=change, address_index=address_index)
    )


def validate_solana_derivation_path(path: str) -> bool:
    try:
        components = parse_derivation_path(path)
    except InvalidDerivationPathError:
        return False
    if components.purpose != SOLANA_PURPOSE or components.coin_type != SOLANA_COIN_TYPE:
        return False
    return all(
        0 <= value <= _MAX_INDEX
        for value in (components.account, components.change, components.address_index)
    )


# --------------------------------------------------------------------------- #
# Symmetric encryption
# --------------------------------------------------------------------------- #
def derive_encryption_key(password: str, salt: bytes) -> bytes:
    """Derive a symmetric key from the password using PBKDF2-HMAC-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=_KEY_BYTES,
        salt=salt,
        iterations=_KDF_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


def _split_payload(payload: bytes) -> Tuple[bytes, bytes, bytes]:
    if len(payload) < _SALT_BYTES + _IV_BYTES + _TAG_BYTES:
        raise ValueError("Encrypted payload is malformed or truncated.")
    salt = payload[:_SALT_BYTES]
    iv = payload[_SALT_BYTES : _SALT_BYTES + _IV_BYTES]
    ciphertext = payload[_SALT_BYTES + _IV_BYTES :]
    return salt, iv, ciphertext


def encrypt(data: str, password: str) -> str:
    """
    Encrypt ``data`` with a key derived from ``password``.

    A fresh salt and IV are drawn for every call, so encrypting the same
    plaintext twice never yields the same payload.
    """
    if not password:
        raise EncryptionFailedError("Encryption failed: password is required")
    try:
        salt = generate_secure_random(_SALT_BYTES)
        iv = generate_secure_random(_IV_BYTES)
        key = derive_encryption_key(password, salt)
        ciphertext = AESGCM(key).encrypt(iv, data.encode("utf-8"), None)
    except Exception as exc:
        raise EncryptionFailedError(f"Encryption failed: {exc}") from exc
    return base64.b64encode(salt + iv + ciphertext).decode("ascii")


def decrypt(encrypted_data: str, password: str) -> str:
    """
    Decrypt a payload produced by :func:`encrypt`.

    Raises:
        DecryptionFailedError: On a wrong password or a tampered payload; the
            authentication tag guarantees garbage is never returned.
    """
    if not password:
        raise DecryptionFailedError("Decryption failed: password is required")
    try:
        payload = base64.b64decode(encrypted_data, validate=True)
        salt, iv, ciphertext = _split_payload(payload)
        key = derive_encryption_key(password, salt)
        plaintext = AESGCM(key).decrypt(iv, ciphertext, None)
        return plaintext.decode("utf-8")
    except InvalidTag as exc:
        raise DecryptionFailedError("Decryption failed: wrong password or corrupted data") from exc
    except Exception as exc:
        raise DecryptionFailedError(f"Decryption failed: {exc}") from exc


# --------------------------------------------------------------------------- #
# Passwords
# --------------------------------------------------------------------------- #
_SPECIAL_CHARS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


def validate_password_strength(password: str) -> Dict[str, object]:
    """Report every violated rule, not just the first."""
    errors: List[str] = []
    if len(password) < 8:
        errors.append("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if not _SPECIAL_CHARS.search(password):
        errors.append("Password must contain at least one special character")
    return {"is_valid": not errors, "errors": errors}
