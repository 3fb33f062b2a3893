"""Unit tests for auth/reset.py -- the forgot/reset password handshake.

Covers:
- request_reset() stores only the digest and mails exactly one link with the plaintext
- Delivery failure clears the stored token and raises DeliveryError
- An unexpected notifier exception also clears the token and propagates
- reset_password() consumes the token (second use fails)
- Expiry boundary: accepted at N-1 minutes, rejected at N+1 minutes
- After a reset the old password no longer logs in
"""

from __future__ import annotations

import pytest

from auth.issuer import SessionIssuer
from auth.reset import RESET_PATH, ResetCoordinator
from auth.tokens import TokenCodec
from core.errors import AuthenticationError, DeliveryError, InvalidTokenError, NotFoundError, ValidationError


def _token_from(notifier) -> str:
    body = notifier.sent[-1].body
    start = body.index(RESET_PATH) + len(RESET_PATH)
    return body[start : start + 64]


class TestRequestReset:
    def test_mails_one_link_and_stores_only_digest(
        self, coordinator: ResetCoordinator, notifier, make_identity, store, codec: TokenCodec
    ) -> None:
        ana = make_identity()
        coordinator.request_reset("ana@x.com", "http://testserver")

        assert len(notifier.sent) == 1
        message = notifier.sent[0]
        assert message.to_email == "ana@x.com"
        assert "10 minutes" in message.subject
        plaintext = _token_from(notifier)
        assert f"http://testserver{RESET_PATH}{plaintext}" in message.body

        stored = store.find_by_id(ana.id)
        assert stored.reset_token_digest == codec.digest_reset_token(plaintext)
        assert plaintext not in repr(stored)
        assert codec.verify_reset_token("f" * 64, stored.reset_token_digest) is False

    def test_expiry_is_ten_minutes_out(self, coordinator: ResetCoordinator, clock, make_identity, store) -> None:
        ana = make_identity()
        coordinator.request_reset("ana@x.com", "http://testserver")
        stored = store.find_by_id(ana.id)
        assert (stored.reset_expires_at - clock()).total_seconds() == pytest.approx(600, abs=1e-3)

    def test_new_request_overwrites_previous_token(
        self, coordinator: ResetCoordinator, notifier, make_identity
    ) -> None:
        make_identity()
        coordinator.request_reset("ana@x.com", "http://testserver")
        first = _token_from(notifier)
        coordinator.request_reset("ana@x.com", "http://testserver")

        with pytest.raises(InvalidTokenError):
            coordinator.reset_password(first, "newpass12", "newpass12")

    def test_unknown_email(self, coordinator: ResetCoordinator, notifier) -> None:
        with pytest.raises(NotFoundError):
            coordinator.request_reset("nobody@x.com", "http://testserver")
        assert notifier.sent == []

    def test_missing_email(self, coordinator: ResetCoordinator) -> None:
        with pytest.raises(ValidationError):
            coordinator.request_reset("", "http://testserver")

    def test_delivery_failure_clears_token(
        self, store, codec, verifier, settings, failing_notifier, make_identity
    ) -> None:
        ana = make_identity()
        failing = ResetCoordinator(store, codec, verifier, failing_notifier, settings)

        with pytest.raises(DeliveryError) as exc_info:
            failing.request_reset("ana@x.com", "http://testserver")

        assert exc_info.value.status_code == 500
        assert failing_notifier.calls == 1
        stored = store.find_by_id(ana.id)
        assert stored.reset_token_digest is None
        assert stored.reset_expires_at is None

    def test_unexpected_notifier_error_still_clears_token(
        self, store, codec, verifier, settings, make_identity
    ) -> None:
        class BrokenNotifier:
            def send(self, to_email: str, subject: str, body: str) -> None:
                raise RuntimeError("template missing")

        ana = make_identity()
        broken = ResetCoordinator(store, codec, verifier, BrokenNotifier(), settings)

        with pytest.raises(RuntimeError):
            broken.request_reset("ana@x.com", "http://testserver")

        stored = store.find_by_id(ana.id)
        assert stored.reset_token_digest is None
        assert stored.reset_expires_at is None


class TestResetPassword:
    def test_token_is_single_use(self, coordinator: ResetCoordinator, notifier, make_identity, store) -> None:
        ana = make_identity()
        coordinator.request_reset("ana@x.com", "http://testserver")
        plaintext = _token_from(notifier)

        issued = coordinator.reset_password(plaintext, "newpass12", "newpass12")
        assert issued.identity.id == ana.id
        stored = store.find_by_id(ana.id)
        assert stored.reset_token_digest is None
        assert stored.password_changed_at is not None

        with pytest.raises(InvalidTokenError):
            coordinator.reset_password(plaintext, "another12", "another12")

    def test_accepted_one_minute_before_expiry(
        self, coordinator: ResetCoordinator, notifier, clock, make_identity
    ) -> None:
        make_identity()
        coordinator.request_reset("ana@x.com", "http://testserver")
        clock.advance(minutes=9)
        coordinator.reset_password(_token_from(notifier), "newpass12", "newpass12")

    def test_rejected_one_minute_after_expiry(
        self, coordinator: ResetCoordinator, notifier, clock, make_identity
    ) -> None:
        make_identity()
        coordinator.request_reset("ana@x.com", "http://testserver")
        clock.advance(minutes=11)
        with pytest.raises(InvalidTokenError):
            coordinator.reset_password(_token_from(notifier), "newpass12", "newpass12")

    def test_unknown_and_expired_tokens_look_the_same(
        self, coordinator: ResetCoordinator, notifier, clock, make_identity
    ) -> None:
        make_identity()
        coordinator.request_reset("ana@x.com", "http://testserver")
        clock.advance(minutes=11)
        with pytest.raises(InvalidTokenError) as expired:
            coordinator.reset_password(_token_from(notifier), "newpass12", "newpass12")
        with pytest.raises(InvalidTokenError) as unknown:
            coordinator.reset_password("0" * 64, "newpass12", "newpass12")
        assert expired.value.message == unknown.value.message

    def test_mismatched_passwords_keep_token_alive(
        self, coordinator: ResetCoordinator, notifier, make_identity
    ) -> None:
        make_identity()
        coordinator.request_reset("ana@x.com", "http://testserver")
        plaintext = _token_from(notifier)
        with pytest.raises(ValidationError):
            coordinator.reset_password(plaintext, "newpass12", "newpass21")
        coordinator.reset_password(plaintext, "newpass12", "newpass12")

    def test_old_password_stops_working(
        self, coordinator: ResetCoordinator, issuer: SessionIssuer, notifier, make_identity
    ) -> None:
        make_identity()
        coordinator.request_reset("ana@x.com", "http://testserver")
        coordinator.reset_password(_token_from(notifier), "newpass1", "newpass1")

        with pytest.raises(AuthenticationError):
            issuer.login("ana@x.com", "secret12")
        assert issuer.login("ana@x.com", "newpass1").identity.email == "ana@x.com"
