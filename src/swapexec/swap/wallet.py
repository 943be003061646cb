"""Wallet key loading from local storage."""

import json
import logging
from pathlib import Path
from typing import Union

from solders.keypair import Keypair

from swapexec.errors import InvalidWalletFormat

logger = logging.getLogger(__name__)

SECRET_KEY_LENGTH = 64


def keypair_from_bytes(data: bytes) -> Keypair:
    """Build a keypair from secret key material.

    Accepts either a JSON array of 64 integers (Solana CLI format) or
    64 raw bytes.

    Raises:
        InvalidWalletFormat: on any other length or format
    """
    secret = _parse_json_array(data)
    if secret is None:
        secret = bytes(data)

    if len(secret) != SECRET_KEY_LENGTH:
        raise InvalidWalletFormat("Invalid wallet file format")

    try:
        return Keypair.from_bytes(secret)
    except ValueError as e:
        raise InvalidWalletFormat(f"Invalid wallet key material: {e}") from e


def load_wallet(path: Union[str, Path]) -> Keypair:
    """Load a wallet keypair from a file.

    Raises:
        InvalidWalletFormat: when the file is missing or malformed
    """
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise InvalidWalletFormat(f"Cannot read wallet file {path}: {e}") from e

    keypair = keypair_from_bytes(data)
    logger.info(f"Loaded wallet: {keypair.pubkey()}")
    return keypair


def _parse_json_array(data: bytes):
    try:
        values = json.loads(data)
    except (UnicodeDecodeError, ValueError):
        return None

    if not isinstance(values, list):
        return None
    if not all(isinstance(v, int) and not isinstance(v, bool) and 0 <= v <= 255 for v in values):
        raise InvalidWalletFormat("Wallet JSON array must contain integers in 0..255")
    return bytes(values)
