import pytest
from eth_account import Account, messages

from core_aa.exceptions import SignerUnavailableException
from core_aa.user_operation.user_operation_hash import get_user_operation_hash
from core_aa.user_operation.user_operation_signer import (
    LocalSigner, recover_signer, sign_and_hash_user_operation,
    sign_user_operation, verify_user_operation_signature)

from conftest import CHAIN_ID, ENTRYPOINT, OWNER_SECRET, PAYMASTER_SECRET


def test_local_signer_address(owner_signer):
    assert owner_signer.address == Account.from_key(OWNER_SECRET).address


def test_sign_round_trip(user_operation, owner_signer):
    user_operation_hash = get_user_operation_hash(
        user_operation, ENTRYPOINT, CHAIN_ID)

    signed = sign_user_operation(
        user_operation, user_operation_hash, owner_signer)

    assert len(signed.signature) == 65
    assert verify_user_operation_signature(
        signed, user_operation_hash, owner_signer.address)
    assert recover_signer(
        user_operation_hash, signed.signature) == owner_signer.address


def test_signature_uses_personal_message_prefix(user_operation, owner_signer):
    user_operation_hash = get_user_operation_hash(
        user_operation, ENTRYPOINT, CHAIN_ID)
    signed = sign_user_operation(
        user_operation, user_operation_hash, owner_signer)

    expected = Account.sign_message(
        messages.encode_defunct(primitive=user_operation_hash),
        private_key=OWNER_SECRET,
    )
    assert signed.signature == bytes(expected.signature)


def test_signing_does_not_mutate_input(user_operation, owner_signer):
    user_operation_hash = get_user_operation_hash(
        user_operation, ENTRYPOINT, CHAIN_ID)
    signed = sign_user_operation(
        user_operation, user_operation_hash, owner_signer)

    assert user_operation.signature == b""
    assert signed.to_list()[:-1] == user_operation.to_list()[:-1]
    # the signed operation still hashes to the signed digest
    assert get_user_operation_hash(
        signed, ENTRYPOINT, CHAIN_ID) == user_operation_hash


def test_verify_rejects_other_signer(user_operation, owner_signer):
    user_operation_hash = get_user_operation_hash(
        user_operation, ENTRYPOINT, CHAIN_ID)
    signed = sign_user_operation(
        user_operation, user_operation_hash, owner_signer)
    other_address = LocalSigner(PAYMASTER_SECRET).address

    assert not verify_user_operation_signature(
        signed, user_operation_hash, other_address)
    assert not verify_user_operation_signature(
        user_operation, user_operation_hash, owner_signer.address)


def test_verify_rejects_other_chain(user_operation, owner_signer):
    signed, _ = sign_and_hash_user_operation(
        user_operation, ENTRYPOINT, CHAIN_ID, owner_signer)
    other_chain_hash = get_user_operation_hash(user_operation, ENTRYPOINT, 1)
    assert not verify_user_operation_signature(
        signed, other_chain_hash, owner_signer.address)


def test_sign_and_hash(user_operation, owner_signer):
    signed, user_operation_hash = sign_and_hash_user_operation(
        user_operation, ENTRYPOINT, CHAIN_ID, owner_signer)
    assert user_operation_hash == get_user_operation_hash(
        user_operation, ENTRYPOINT, CHAIN_ID)
    assert verify_user_operation_signature(
        signed, user_operation_hash, owner_signer.address)


def test_sign_without_signer(user_operation):
    user_operation_hash = get_user_operation_hash(
        user_operation, ENTRYPOINT, CHAIN_ID)
    with pytest.raises(SignerUnavailableException):
        sign_user_operation(user_operation, user_operation_hash, None)
    with pytest.raises(SignerUnavailableException):
        sign_and_hash_user_operation(
            user_operation, ENTRYPOINT, CHAIN_ID, None)
