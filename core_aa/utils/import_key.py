import glob
import json

from eth_account import Account

from core_aa.exceptions import SignerUnavailableException

DEFAULT_KEYSTORE_PATTERN = "keystore/*"


def resolve_keystore_file(keystore_file_path: str) -> str:
    """First file matching the path, which may be a glob pattern."""
    keystore_files = sorted(glob.glob(keystore_file_path))
    if len(keystore_files) == 0:
        raise SignerUnavailableException(
            f"No keystore file found at {keystore_file_path}")
    return keystore_files[0]


def import_owner_private_key(
    keystore_file_password: str,
    keystore_file_path: str = DEFAULT_KEYSTORE_PATTERN,
) -> str:
    keystore_file = resolve_keystore_file(keystore_file_path)
    try:
        with open(keystore_file) as keyfile:
            keystore = json.load(keyfile)
    except (OSError, ValueError) as excp:
        raise SignerUnavailableException(
            f"Can't read keystore file {keystore_file}: {excp}")
    try:
        private_key = Account.decrypt(keystore, keystore_file_password)
    except ValueError:
        raise SignerUnavailableException(
            f"Can't decrypt keystore file {keystore_file}, wrong password?")
    return "0x" + bytes(private_key).hex()


def public_address_from_private_key(private_key: str) -> str:
    return Account.from_key(private_key).address
