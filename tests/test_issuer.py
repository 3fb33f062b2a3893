"""Unit tests for auth/issuer.py -- signup, login and password update.

Covers:
- signup() session encodes the new identity's id; no credential material outward
- signup() input validation and email conflicts
- login() returns one error kind for unknown email and wrong password [C1]
- login() pays the bcrypt cost for unknown emails too
- update_password() re-checks the current password and stamps the change
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from auth.issuer import SessionIssuer
from auth.tokens import TokenCodec
from core.errors import AuthenticationError, ConflictError, ValidationError


class TestSignup:
    def test_session_is_bound_to_new_identity(self, issuer: SessionIssuer, codec: TokenCodec) -> None:
        issued = issuer.signup("Ana", "ana@x.com", "secret12", "secret12")
        claims = codec.verify_session(issued.artifact.token)
        assert claims.identity_id == issued.identity.id

    def test_public_representation_has_no_secrets(self, issuer: SessionIssuer) -> None:
        issued = issuer.signup("Ana", "ana@x.com", "secret12", "secret12")
        public = issued.identity.public_dict()
        assert "password_hash" not in public
        assert issued.identity.password_hash not in str(public)
        assert set(public) == {"id", "name", "email", "role", "created_at"}

    def test_password_is_stored_hashed(self, issuer: SessionIssuer, store) -> None:
        issued = issuer.signup("Ana", "ana@x.com", "secret12", "secret12")
        stored = store.find_by_id(issued.identity.id)
        assert stored.password_hash != "secret12"
        assert stored.password_hash.startswith("$2")

    def test_explicit_role(self, issuer: SessionIssuer) -> None:
        issued = issuer.signup("Mo", "mo@x.com", "secret12", "secret12", role="moderator")
        assert issued.identity.role == "moderator"

    def test_role_choice_can_be_switched_off(self, store, verifier, codec) -> None:
        locked = SessionIssuer(store, verifier, codec, allow_role_selection=False)
        with pytest.raises(ValidationError):
            locked.signup("Eve", "eve@x.com", "secret12", "secret12", role="admin")
        assert store.find_by_email("eve@x.com") is None
        assert locked.signup("Ana", "ana@x.com", "secret12", "secret12").identity.role == "standard"
        assert locked.signup("Bo", "bo@x.com", "secret12", "secret12", role="standard").identity.role == "standard"

    def test_mismatched_confirmation(self, issuer: SessionIssuer) -> None:
        with pytest.raises(ValidationError):
            issuer.signup("Ana", "ana@x.com", "secret12", "secret13")

    def test_missing_name(self, issuer: SessionIssuer) -> None:
        with pytest.raises(ValidationError):
            issuer.signup(None, "ana@x.com", "secret12", "secret12")

    def test_duplicate_email(self, issuer: SessionIssuer) -> None:
        issuer.signup("Ana", "ana@x.com", "secret12", "secret12")
        with pytest.raises(ConflictError) as exc_info:
            issuer.signup("Ana Two", "Ana@X.com", "secret12", "secret12")
        assert exc_info.value.status_code == 409


class TestLogin:
    def test_correct_credentials(self, issuer: SessionIssuer, make_identity, codec: TokenCodec) -> None:
        ana = make_identity()
        issued = issuer.login("ANA@x.com", "secret12")
        assert codec.verify_session(issued.artifact.token).identity_id == ana.id

    def test_unknown_email_and_wrong_password_are_indistinguishable(
        self, issuer: SessionIssuer, make_identity
    ) -> None:
        make_identity()
        with pytest.raises(AuthenticationError) as wrong_password:
            issuer.login("ana@x.com", "wrong")
        with pytest.raises(AuthenticationError) as unknown_email:
            issuer.login("nobody@x.com", "secret12")
        assert type(wrong_password.value) is type(unknown_email.value)
        assert wrong_password.value.message == unknown_email.value.message
        assert wrong_password.value.status_code == unknown_email.value.status_code == 401

    def test_unknown_email_still_runs_bcrypt(self, issuer: SessionIssuer) -> None:
        with patch("auth.credentials.bcrypt.checkpw", return_value=False) as checkpw:
            with pytest.raises(AuthenticationError):
                issuer.login("nobody@x.com", "secret12")
        checkpw.assert_called_once()

    def test_deactivated_identity_cannot_log_in(self, issuer: SessionIssuer, make_identity, store) -> None:
        ana = make_identity()
        ana.is_active = False
        store.save(ana)
        with pytest.raises(AuthenticationError):
            issuer.login("ana@x.com", "secret12")

    @pytest.mark.parametrize(("email", "password"), [(None, "secret12"), ("ana@x.com", ""), (None, None)])
    def test_missing_fields(self, issuer: SessionIssuer, email, password) -> None:
        with pytest.raises(ValidationError) as exc_info:
            issuer.login(email, password)
        assert exc_info.value.status_code == 400


class TestUpdatePassword:
    def test_changes_password_and_stamps_time(self, issuer: SessionIssuer, make_identity, store) -> None:
        ana = make_identity()
        issued = issuer.update_password(ana, "secret12", "newpass12", "newpass12")

        stored = store.find_by_id(ana.id)
        assert stored.password_changed_at is not None
        assert issuer.verifier.verify_credential("newpass12", stored.password_hash)
        assert issued.identity.id == ana.id
        with pytest.raises(AuthenticationError):
            issuer.login("ana@x.com", "secret12")

    def test_wrong_current_password(self, issuer: SessionIssuer, make_identity) -> None:
        ana = make_identity()
        with pytest.raises(AuthenticationError):
            issuer.update_password(ana, "wrong", "newpass12", "newpass12")

    def test_new_pair_must_match(self, issuer: SessionIssuer, make_identity) -> None:
        ana = make_identity()
        with pytest.raises(ValidationError):
            issuer.update_password(ana, "secret12", "newpass12", "newpass21")
