"""
In-memory holder for the vault's session secrets.

The unlock password lives here between ``unlock`` and ``lock``. Secrets are
kept as ``bytearray`` so that ``wipe`` can zero them in place; nothing is ever
written to the environment or to storage.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Union

from .crypto import wipe_sensitive_data


class SecretStore:
    """Per-vault store of named secrets guarded by a reentrant lock."""

    def __init__(self) -> None:
        self._secrets: Dict[str, bytearray] = {}
        self._lock = threading.RLock()

    def store(self, key: str, value: Union[bytes, bytearray, str]) -> None:
        """
        Store a secret, wiping any previous value held under ``key``.

        Raises:
            ValueError: If ``key`` is empty.
            TypeError: If ``value`` is not bytes, bytearray or str.
        """
        if not key:
            raise ValueError("Secret key cannot be empty.")
        if isinstance(value, str):
            data = bytearray(value.encode("utf-8"))
        elif isinstance(value, (bytes, bytearray)):
            data = bytearray(value)
        else:
            raise TypeError(f"Value must be bytes, bytearray, or str; got {type(value).__name__}")

        with self._lock:
            previous = self._secrets.get(key)
            if previous is not None:
                wipe_sensitive_data(previous)
            self._secrets[key] = data

    @contextmanager
    def get_decoded(self, key: str, encoding: str = "utf-8") -> Iterator[Optional[str]]:
        """Yield the decoded secret (or None) for the duration of the block."""
        decoded: Optional[str] = None
        try:
            with self._lock:
                buf = self._secrets.get(key)
                if buf is not None:
                    decoded = buf.decode(encoding)
            yield decoded
        finally:
            del decoded

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._secrets

    def wipe(self, key: str) -> bool:
        with self._lock:
            buf = self._secrets.pop(key, None)
            if buf is None:
                return False
            wipe_sensitive_data(buf)
            return True

    def wipe_all(self) -> int:
        with self._lock:
            count = len(self._secrets)
            for buf in self._secrets.values():
                wipe_sensitive_data(buf)
            self._secrets.clear()
            return count

    def __contains__(self, key: str) -> bool:
        return self.exists(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._secrets)

    def __repr__(self) -> str:
        with self._lock:
            return f"<SecretStore keys={sorted(self._secrets)}>"
