"""Token codec, password hashing and request context tests."""
import base64
import dataclasses
import json
import pytest
from datetime import datetime, timedelta, timezone
from jose import jwt
from framework.exceptions.handler import Unauthenticated
from framework.security import (
    RequestContext,
    Role,
    TokenCodec,
    claim_context_seal,
    get_password_hash,
    verify_password,
)

SECRET = "test-secret"
T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _encode(payload: dict, secret: str = SECRET) -> str:
    return jwt.encode(payload, secret, algorithm="HS256")


def _claims(**overrides) -> dict:
    payload = {
        "sub": "7",
        "tid": 3,
        "role": "tenant_admin",
        "iat": int(T0.timestamp()),
        "exp": int((T0 + timedelta(hours=24)).timestamp()),
    }
    payload.update(overrides)
    return payload


class TestTokenCodec:

    def test_issue_then_decode(self):
        """Decoded claims match what was issued."""
        clock = FakeClock(T0)
        codec = TokenCodec(SECRET, clock=clock)
        issued = codec.issue(7, 3, Role.TENANT_ADMIN)

        claims = codec.decode(issued.token)

        assert claims == issued.claims
        assert claims.user_id == 7
        assert claims.tenant_id == 3
        assert claims.role is Role.TENANT_ADMIN
        assert claims.expires_at - claims.issued_at == timedelta(hours=24)

    def test_valid_until_last_second_of_lifetime(self):
        clock = FakeClock(T0)
        codec = TokenCodec(SECRET, clock=clock)
        token = codec.issue(7, 3, Role.STANDARD_USER).token

        clock.now = T0 + timedelta(hours=24) - timedelta(seconds=1)
        assert codec.decode(token).user_id == 7

    def test_expired_exactly_at_24_hours(self):
        clock = FakeClock(T0)
        codec = TokenCodec(SECRET, clock=clock)
        token = codec.issue(7, 3, Role.STANDARD_USER).token

        clock.now = T0 + timedelta(hours=24)
        with pytest.raises(Unauthenticated) as exc:
            codec.decode(token)
        assert exc.value.reason == "token expired"

    def test_wrong_secret_rejected(self):
        token = TokenCodec("another-secret", clock=FakeClock(T0)).issue(7, 3, Role.TENANT_ADMIN).token

        with pytest.raises(Unauthenticated):
            TokenCodec(SECRET, clock=FakeClock(T0)).decode(token)

    def test_tampered_tenant_claim_rejected(self):
        """Swapping the payload while keeping the signature fails verification."""
        codec = TokenCodec(SECRET, clock=FakeClock(T0))
        header, _, signature = codec.issue(7, 3, Role.TENANT_ADMIN).token.split(".")
        forged = base64.urlsafe_b64encode(json.dumps(_claims(tid=4)).encode()).rstrip(b"=").decode()

        with pytest.raises(Unauthenticated):
            codec.decode(f"{header}.{forged}.{signature}")

    def test_garbage_token_rejected(self):
        with pytest.raises(Unauthenticated):
            TokenCodec(SECRET).decode("not-a-token")

    @pytest.mark.parametrize("overrides", [
        {"sub": "abc"},
        {"role": "owner"},
    ])
    def test_malformed_claims_rejected(self, overrides):
        codec = TokenCodec(SECRET, clock=FakeClock(T0))
        with pytest.raises(Unauthenticated) as exc:
            codec.decode(_encode(_claims(**overrides)))
        assert exc.value.reason == "malformed token claims"

    def test_missing_exp_rejected(self):
        payload = _claims()
        del payload["exp"]
        with pytest.raises(Unauthenticated):
            TokenCodec(SECRET, clock=FakeClock(T0)).decode(_encode(payload))

    def test_super_admin_token_has_no_tenant(self):
        codec = TokenCodec(SECRET, clock=FakeClock(T0))
        claims = codec.decode(codec.issue(1, None, Role.SUPER_ADMIN).token)
        assert claims.tenant_id is None
        assert claims.role is Role.SUPER_ADMIN

    @pytest.mark.parametrize("overrides", [
        {"tid": None, "role": "tenant_admin"},
        {"tid": 3, "role": "super_admin"},
    ])
    def test_tenant_claim_must_match_role(self, overrides):
        codec = TokenCodec(SECRET, clock=FakeClock(T0))
        with pytest.raises(Unauthenticated):
            codec.decode(_encode(_claims(**overrides)))

    def test_empty_secret_refused(self):
        with pytest.raises(ValueError):
            TokenCodec("")


class TestPasswords:

    def test_hash_and_verify(self):
        password = "correct horse"
        hashed = get_password_hash(password)
        assert hashed != password
        assert verify_password(password, hashed)
        assert not verify_password("wrong horse", hashed)


class TestRequestContext:

    def test_context_is_immutable(self):
        ctx = RequestContext(tenant_id=1, user_id=2, role=Role.TENANT_ADMIN)
        with pytest.raises(dataclasses.FrozenInstanceError):
            ctx.tenant_id = 99

    def test_hand_built_contexts_are_untrusted(self):
        assert not RequestContext(tenant_id=1, user_id=2, role=Role.STANDARD_USER).trusted

        ctx = RequestContext(tenant_id=1, user_id=2, role=Role.STANDARD_USER)
        object.__setattr__(ctx, "_seal", object())
        assert not ctx.trusted

    def test_seal_cannot_be_claimed_twice(self):
        """The resolver claimed it at import; nobody else gets it."""
        import apps.identity.resolver  # noqa: F401

        with pytest.raises(RuntimeError):
            claim_context_seal()

    def test_seal_is_not_an_init_argument(self):
        with pytest.raises(TypeError):
            RequestContext(tenant_id=1, user_id=2, role=Role.TENANT_ADMIN, _seal=object())

    def test_super_admin_flag(self):
        assert RequestContext(tenant_id=None, user_id=1, role=Role.SUPER_ADMIN).is_super_admin
        assert not RequestContext(tenant_id=1, user_id=1, role=Role.TENANT_ADMIN).is_super_admin
