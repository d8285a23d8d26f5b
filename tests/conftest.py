import os

# settings are read at import time
os.environ.setdefault("ENCODE_KEY", "test-encode-key-0123456789abcdef0123")
os.environ["NONCE_BACKEND"] = "memory"
os.environ["LOG_FORMAT"] = "text"

import hashlib
from typing import Dict, Generator, List, Optional

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, decode_dss_signature
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from fastapi.testclient import TestClient

from app.core.auth_types import AccountKey, AuthAttempt, FlowAccount
from app.core.errors import AccountLookupError
from app.core.jwt_utils import CredentialIssuer, JwtTokenCodec
from app.services.account_keys import AccountKeyResolver
from app.services.nonce_store import MemoryNonceStore
from app.services.signature_verifier import USER_DOMAIN_TAG
from app.services.wallet_auth import WalletAuthenticator, build_profile

NOW_MS = 1_735_689_600_000
ADDRESS = "0x58f9e6153690c852"
TEST_SECRET = os.environ["ENCODE_KEY"]

_CURVES = {"ECDSA_P256": ec.SECP256R1(), "ECDSA_secp256k1": ec.SECP256K1()}
_HASHERS = {"SHA3_256": hashlib.sha3_256, "SHA2_256": hashlib.sha256}


class FlowTestKey:
    """A real account key that signs like a Flow wallet (user domain tag, raw r||s)."""

    def __init__(self, index: int, signing_algorithm: str = "ECDSA_P256", hashing_algorithm: str = "SHA3_256",
                 weight: int = 1000, revoked: bool = False):
        self.index = index
        self.signing_algorithm = signing_algorithm
        self.hashing_algorithm = hashing_algorithm
        self.weight = weight
        self.revoked = revoked
        self.private_key = ec.generate_private_key(_CURVES[signing_algorithm])

    @property
    def public_key_hex(self) -> str:
        point = self.private_key.public_key().public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
        return point[1:].hex()

    def account_key(self) -> AccountKey:
        return AccountKey(
            index=self.index,
            public_key=self.public_key_hex,
            revoked=self.revoked,
            signing_algorithm=self.signing_algorithm,
            hashing_algorithm=self.hashing_algorithm,
            weight=self.weight,
        )

    def sign(self, message: str) -> str:
        digest = _HASHERS[self.hashing_algorithm](USER_DOMAIN_TAG + message.encode("utf-8")).digest()
        der = self.private_key.sign(digest, ec.ECDSA(Prehashed(hashes.SHA256())))
        r, s = decode_dss_signature(der)
        return (r.to_bytes(32, "big") + s.to_bytes(32, "big")).hex()


class FakeDirectory:
    """In-memory account directory that counts lookups."""

    def __init__(self, accounts: Optional[Dict[str, List[FlowTestKey]]] = None, fail: bool = False):
        self.accounts = accounts or {}
        self.fail = fail
        self.calls = 0

    def get_account(self, address: str) -> FlowAccount:
        self.calls += 1
        if self.fail or address not in self.accounts:
            raise AccountLookupError(f"account lookup failed for {address}")
        return FlowAccount(address=address, keys=[key.account_key() for key in self.accounts[address]])


class FixedClock:
    def __init__(self, now: int = NOW_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def flow_key() -> FlowTestKey:
    return FlowTestKey(index=0)


@pytest.fixture
def directory(flow_key) -> FakeDirectory:
    return FakeDirectory({ADDRESS: [flow_key]})


@pytest.fixture
def nonce_store(clock) -> MemoryNonceStore:
    return MemoryNonceStore(clock=clock)


@pytest.fixture
def codec() -> JwtTokenCodec:
    return JwtTokenCodec(secret=TEST_SECRET)


@pytest.fixture
def issuer(codec) -> CredentialIssuer:
    return CredentialIssuer(codec)


@pytest.fixture
def make_authenticator(nonce_store, directory, issuer, clock):
    """Build a WalletAuthenticator for a wallet type, sharing the fixtures above."""

    def _make(wallet_type: str = "flow", **kwargs) -> WalletAuthenticator:
        dir_ = kwargs.pop("directory", directory)
        return WalletAuthenticator(
            profile=kwargs.pop("profile", None) or build_profile(wallet_type, dir_),
            nonce_store=kwargs.pop("nonce_store", nonce_store),
            resolver=kwargs.pop("resolver", None) or AccountKeyResolver(dir_),
            issuer=kwargs.pop("issuer", issuer),
            clock=clock,
            project_name="Test App",
            **kwargs,
        )

    return _make


@pytest.fixture
def signed_attempt(clock):
    """Build a login attempt for a challenge, signed with `key`."""

    def _make(challenge, key: FlowTestKey, address: str = ADDRESS, **overrides) -> AuthAttempt:
        fields = dict(
            address=address,
            signature=key.sign(challenge.message),
            message=challenge.message,
            timestamp=clock.now,
            nonce=challenge.nonce,
        )
        fields.update(overrides)
        return AuthAttempt(**fields)

    return _make


@pytest.fixture
def client(directory) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI application"""
    from main import app
    from app.core.dependencies import get_account_directory, get_nonce_store

    store = MemoryNonceStore()
    app.dependency_overrides[get_nonce_store] = lambda: store
    app.dependency_overrides[get_account_directory] = lambda: directory
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
