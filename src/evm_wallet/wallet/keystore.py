"""Local key custody backed by an eth-account keystore file.

Transfers never see raw key bytes: they are handed a :class:`Signer`, and
:class:`KeystoreSigner` is the only implementation that decrypts the file.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from eth_account import Account
from web3 import Web3

KEYSTORE_FILENAME = "keystore.json"


@runtime_checkable
class Signer(Protocol):
    """Anything that can sign transactions for a fixed address."""

    @property
    def address(self) -> str: ...

    def sign_transaction(self, tx: dict[str, Any]) -> bytes:
        """Return the raw signed transaction bytes."""
        ...


class KeystoreSigner:
    """Signs with a key decrypted from the local keystore."""

    def __init__(self, private_key: bytes) -> None:
        self._account = Account.from_key(private_key)

    @classmethod
    def from_keystore(cls, wallet_dir: Path, password: str) -> KeystoreSigner:
        return cls(decrypt_key(wallet_dir, password))

    @property
    def address(self) -> str:
        return self._account.address

    def sign_transaction(self, tx: dict[str, Any]) -> bytes:
        signed = self._account.sign_transaction(tx)
        return bytes(signed.raw_transaction)


def keystore_path(wallet_dir: Path) -> Path:
    return wallet_dir / KEYSTORE_FILENAME


def _read_keystore(wallet_dir: Path) -> dict[str, Any] | None:
    path = keystore_path(wallet_dir)
    if not path.is_file():
        return None
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


def create_wallet(wallet_dir: Path, password: str) -> str:
    """Generate a key and store it encrypted in *wallet_dir*.

    Parameters
    ----------
    wallet_dir:
        Directory that receives ``keystore.json``; created if missing.
    password:
        Passphrase for the scrypt-encrypted keyfile.

    Returns
    -------
    str
        Checksummed address of the generated key.

    Raises
    ------
    FileExistsError
        If *wallet_dir* already holds a keystore. The file is created with
        mode 0600 and is never overwritten.
    """
    path = keystore_path(wallet_dir)
    wallet_dir.mkdir(parents=True, exist_ok=True)

    account = Account.create()
    keyfile = Account.encrypt(account.key, password)
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    except FileExistsError:
        raise FileExistsError(
            f"A wallet already exists at {path}; remove it to create a new one."
        ) from None
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        json.dump(keyfile, fh, indent=2)
    return account.address


def load_address(wallet_dir: Path) -> str | None:
    """Checksummed address stored in the keystore, or ``None`` without one.

    Reads the plaintext ``address`` field; no password is needed.
    """
    keyfile = _read_keystore(wallet_dir)
    if keyfile is None:
        return None
    address = str(keyfile.get("address", ""))
    if not address.lower().startswith("0x"):
        address = f"0x{address}"
    return Web3.to_checksum_address(address)


def decrypt_key(wallet_dir: Path, password: str) -> bytes:
    """Return the private key bytes stored in *wallet_dir*.

    Raises
    ------
    FileNotFoundError
        If *wallet_dir* has no keystore.
    ValueError
        If *password* does not decrypt the keyfile.
    """
    keyfile = _read_keystore(wallet_dir)
    if keyfile is None:
        raise FileNotFoundError(f"No keystore found at {keystore_path(wallet_dir)}")
    try:
        return bytes(Account.decrypt(keyfile, password))
    except ValueError as exc:
        raise ValueError(f"Could not decrypt keystore: {exc}") from exc
