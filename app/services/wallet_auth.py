"""
Wallet Login Orchestration

WalletAuthenticator runs one signed-challenge login attempt through the pipeline

    RECEIVED -> STRUCTURE_VALID -> TIMESTAMP_VALID -> NONCE_VALID -> ADDRESS_VALID
    -> SIGNATURE_NORMALIZED -> KEYS_RESOLVED -> SIGNATURE_VERIFIED
    -> NONCE_CONSUMED -> CREDENTIAL_ISSUED

and turns every failure into a rejected AuthResult instead of raising. The nonce
is consumed only after the signature verified; if issuing the credential fails
afterwards the nonce stays consumed.

Differences between wallets are carried by a WalletProfile:
- flow:   candidate keys come from the account directory (primary key first,
          then every other active key); key 0 is the fallback
- blocto: the signature is always made with key 0, no key resolution
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional

from app.core import security_events
from app.core.auth_types import AuthAttempt, AuthResult, AuthState, NonceChallenge
from app.core.config import settings
from app.core.errors import AuthError, InfrastructureError, NonceError, SignatureError
from app.core.jwt_utils import CredentialIssuer
from app.core.signature_utils import decode_message, normalize_signature
from app.services.account_keys import AccountDirectory, AccountKeyResolver
from app.services.nonce_store import NonceStore, now_ms
from app.services.request_validator import RequestValidator
from app.services.signature_verifier import (
    FlowUserSignaturePrimitive,
    SignatureVerifier,
    VerificationPrimitive,
)

logger = logging.getLogger(__name__)

FLOW_SIGNATURE_BYTES = 64


@dataclass(frozen=True)
class WalletProfile:
    wallet_type: str
    primitive: VerificationPrimitive
    resolve_keys: bool = True
    default_key_index: int = 0
    signature_bytes: Optional[int] = FLOW_SIGNATURE_BYTES


def flow_profile(directory: AccountDirectory) -> WalletProfile:
    return WalletProfile(wallet_type="flow", primitive=FlowUserSignaturePrimitive(directory))


def blocto_profile(directory: AccountDirectory) -> WalletProfile:
    return WalletProfile(
        wallet_type="blocto",
        primitive=FlowUserSignaturePrimitive(directory),
        resolve_keys=False,
    )


PROFILE_BUILDERS: Dict[str, Callable[[AccountDirectory], WalletProfile]] = {
    "flow": flow_profile,
    "blocto": blocto_profile,
}


def build_profile(wallet_type: str, directory: AccountDirectory) -> WalletProfile:
    builder = PROFILE_BUILDERS.get(wallet_type)
    if builder is None:
        raise ValueError(f"unsupported wallet type: {wallet_type}")
    return builder(directory)


class WalletAuthenticator:
    def __init__(
        self,
        profile: WalletProfile,
        nonce_store: NonceStore,
        resolver: AccountKeyResolver,
        issuer: CredentialIssuer,
        validator: Optional[RequestValidator] = None,
        verifier: Optional[SignatureVerifier] = None,
        clock: Callable[[], int] = now_ms,
        project_name: str = settings.PROJECT_NAME,
    ) -> None:
        if not isinstance(profile, WalletProfile):
            raise ValueError(f"unsupported wallet profile: {profile!r}")
        self.profile = profile
        self.nonce_store = nonce_store
        self.resolver = resolver
        self.issuer = issuer
        self.validator = validator or RequestValidator()
        self.verifier = verifier or SignatureVerifier(profile.primitive)
        self._clock = clock
        self.project_name = project_name

    @property
    def wallet_type(self) -> str:
        return self.profile.wallet_type

    def generate_nonce(self, now_ms: Optional[int] = None) -> NonceChallenge:
        """Issue a fresh nonce and the message the wallet should sign."""
        timestamp = self._clock() if now_ms is None else now_ms
        nonce = self.nonce_store.generate()
        message = f"Login to {self.project_name}\nNonce: {nonce}\nTimestamp: {timestamp}"
        security_events.nonce_issued(self.wallet_type, timestamp + self.nonce_store.ttl_ms)
        return NonceChallenge(nonce=nonce, message=message, timestamp=timestamp)

    def _advance(self, state: AuthState) -> AuthState:
        logger.debug("%s login -> %s", self.wallet_type, state.value)
        return state

    def _candidates(self, address: str, first: int) -> Iterator[int]:
        """first, then the remaining active keys; the full key list is only fetched if needed."""
        yield first
        if not self.profile.resolve_keys:
            return
        for key_index in self.resolver.all_active_keys(address):
            if key_index != first:
                yield key_index

    def _first_candidate(self, address: str) -> int:
        if not self.profile.resolve_keys:
            return self.profile.default_key_index
        primary = self.resolver.primary_key(address)
        if primary is None:
            logger.info("no primary key resolved for %s, falling back to key %s", address, self.profile.default_key_index)
            return self.profile.default_key_index
        return primary

    def _verify_candidates(self, address: str, message: str, signature_hex: str, first: int) -> int:
        """Index of the first key that verifies the signature."""
        failure: Optional[InfrastructureError] = None
        tried = 0
        for key_index in self._candidates(address, first):
            tried += 1
            try:
                if self.verifier.try_verify(address, message, signature_hex, key_index):
                    return key_index
            except InfrastructureError as exc:
                logger.warning("verification with key %s could not complete: %s", key_index, exc)
                failure = exc
        if failure is not None:
            raise failure
        raise SignatureError(f"no key of {address} verified the signature ({tried} tried)")

    def verify(self, attempt: AuthAttempt, now_ms: Optional[int] = None) -> AuthResult:
        """
        Authenticate one login attempt.

        Args:
            attempt: Address, signature, message, client timestamp and nonce
            now_ms: Server time in epoch ms (defaults to the clock)

        Returns:
            AuthResult with the session token on success, or the rejection
            reason, public detail and HTTP status on failure
        """
        now = self._clock() if now_ms is None else now_ms
        state = self._advance(AuthState.RECEIVED)
        try:
            self.validator.check_structure(attempt)
            state = self._advance(AuthState.STRUCTURE_VALID)

            # replay window first, no nonce or signature work for stale requests
            self.validator.check_timestamp(attempt.timestamp, now)
            state = self._advance(AuthState.TIMESTAMP_VALID)

            if not self.nonce_store.validate(attempt.nonce, now):
                raise NonceError()
            state = self._advance(AuthState.NONCE_VALID)

            self.validator.check_address(attempt.address)
            state = self._advance(AuthState.ADDRESS_VALID)

            signature_hex = normalize_signature(attempt.signature, self.profile.signature_bytes)
            if signature_hex is None:
                raise SignatureError("signature is neither hex nor base64 of the expected length")
            message = decode_message(attempt.message)
            state = self._advance(AuthState.SIGNATURE_NORMALIZED)

            first = self._first_candidate(attempt.address)
            state = self._advance(AuthState.KEYS_RESOLVED)

            key_index = self._verify_candidates(attempt.address, message, signature_hex, first)
            state = self._advance(AuthState.SIGNATURE_VERIFIED)

            if not self.nonce_store.mark_used(attempt.nonce, now):
                # another request with the same nonce won the race
                raise NonceError("nonce consumed by a concurrent login")
            state = self._advance(AuthState.NONCE_CONSUMED)

            credential = self.issuer.issue(attempt.address, self.wallet_type)
            state = self._advance(AuthState.CREDENTIAL_ISSUED)
        except InfrastructureError as exc:
            logger.exception("%s login failed at %s", self.wallet_type, state.value)
            security_events.infrastructure_failure(self.wallet_type, state.value, exc)
            return self._reject(exc, state)
        except NonceError as exc:
            security_events.nonce_rejected(self.wallet_type, attempt.nonce, attempt.address)
            return self._reject(exc, state)
        except AuthError as exc:
            security_events.login_rejected(self.wallet_type, exc.reason, attempt.address, exc.detail)
            return self._reject(exc, state)

        security_events.login_succeeded(self.wallet_type, attempt.address, credential.subject, key_index)
        return AuthResult.succeeded(attempt.address, self.wallet_type, credential)

    def _reject(self, exc: AuthError, state: AuthState) -> AuthResult:
        self._advance(AuthState.REJECTED)
        return AuthResult.rejected(exc.reason, exc.public_detail, exc.status_code, rejected_at=state)
