"""Shared fixtures: a small deployment with two keyed accounts."""

from dataclasses import replace
from typing import Callable

import pytest

from optimist.config import RollupParams
from optimist.crypto.bls import KeyPair
from optimist.models.state import UserState
from optimist.models.transaction import Transaction, signing_message
from optimist.service import RollupService, SignedTx

TOKEN = 1


@pytest.fixture(scope="session")
def alice() -> KeyPair:
    return KeyPair.from_secret(7)


@pytest.fixture(scope="session")
def bob() -> KeyPair:
    return KeyPair.from_secret(11)


@pytest.fixture
def params() -> RollupParams:
    return RollupParams(
        state_depth=4,
        registry_depth=4,
        deposit_subtree_depth=1,
        max_txs_per_commitment=8,
    )


@pytest.fixture
def make_service(params: RollupParams, alice: KeyPair, bob: KeyPair) -> Callable[..., RollupService]:
    """Alice (account 0) holds 10 in slot 0, Bob (account 1) 0 in slot 1."""
    def _make(**overrides) -> RollupService:
        service = RollupService(replace(params, **overrides))
        service.register_pubkey(alice.pubkey)
        service.register_pubkey(bob.pubkey)
        service.create_account(UserState(state_id=0, account_id=0, token_id=TOKEN, balance=10))
        service.create_account(UserState(state_id=1, account_id=1, token_id=TOKEN, balance=0))
        return service
    return _make


@pytest.fixture
def service(make_service: Callable[..., RollupService]) -> RollupService:
    return make_service()


@pytest.fixture
def sign(params: RollupParams) -> Callable[[Transaction, KeyPair], SignedTx]:
    def _sign(tx: Transaction, key: KeyPair) -> SignedTx:
        message = signing_message(tx, key.pubkey, params.domain)
        return SignedTx(tx, key.sign(message, params.domain))
    return _sign
