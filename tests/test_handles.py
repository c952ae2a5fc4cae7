"""Tests for username derivation at registration."""

import pytest
from fastapi import HTTPException
from sqlmodel import select

from lostfound.models.account import Account
from lostfound.models.profile import Profile
from lostfound.services import hooks
from lostfound.services.accounts import register_account
from lostfound.utils.handles import sanitize_username, unique_username, username_candidate


class TestSanitize:
    def test_lowercases_and_strips_invalid_characters(self):
        assert sanitize_username("John.Smith-99!") == "johnsmith99"

    def test_keeps_underscores(self):
        assert sanitize_username("jane_doe") == "jane_doe"

    def test_truncates_to_twenty_characters(self):
        assert sanitize_username("a" * 30) == "a" * 20


class TestCandidate:
    def test_prefers_metadata_username(self):
        assert username_candidate("someone@example.com", "Jane Doe") == "janedoe"

    def test_blank_metadata_falls_back_to_email(self):
        assert username_candidate("John.Smith@example.com", "   ") == "johnsmith"

    def test_missing_metadata_uses_email_local_part(self):
        assert username_candidate("pat_99@example.com") == "pat_99"

    def test_nothing_usable_gives_default(self):
        assert username_candidate("...@example.com") == "user"


class TestUniqueness:
    def test_free_username_is_used_as_is(self, session):
        assert unique_username(session, "nobody") == "nobody"

    def test_collisions_get_incrementing_suffix(self, session, make_user):
        make_user("x@example.com", username="sam")
        make_user("y@example.com", username="sam1")

        assert unique_username(session, "sam") == "sam2"

    def test_metadata_and_email_collision(self, session):
        _, first = register_account(session, "someone@example.com", username="JohnSmith")
        _, second = register_account(session, "johnsmith@example.com")

        assert first.username == "johnsmith"
        assert second.username == "johnsmith1"


class TestRegistration:
    def test_exactly_one_profile_per_account(self, session):
        account, profile = register_account(session, "Alice@Example.com", full_name="Alice A")

        profiles = session.exec(select(Profile).where(Profile.id == account.id)).all()
        assert len(profiles) == 1
        assert profile.username == "alice"
        assert profile.full_name == "Alice A"
        assert profile.role == "user"
        assert account.email == "alice@example.com"

    def test_full_name_defaults_to_username(self, session):
        _, profile = register_account(session, "bob@example.com")
        assert profile.full_name == "bob"

    def test_duplicate_email_is_rejected(self, session):
        register_account(session, "dup@example.com")

        with pytest.raises(HTTPException) as exc:
            register_account(session, "dup@example.com")

        assert exc.value.status_code == 409
        assert len(session.exec(select(Profile)).all()) == 1

    def test_profile_failure_rolls_back_account(self, session, monkeypatch):
        def broken_hook(*args, **kwargs):
            raise RuntimeError("profile insert failed")

        monkeypatch.setattr(hooks, "on_account_created", broken_hook)

        with pytest.raises(RuntimeError):
            register_account(session, "ghost@example.com")

        assert session.exec(select(Account)).all() == []
        assert session.exec(select(Profile)).all() == []

    def test_username_taken_mid_registration_is_retried(self, session, alice, monkeypatch):
        taken = alice.username
        real_unique_username = hooks.unique_username
        bases = []

        def racing_unique_username(db, base):
            bases.append(base)
            # first derivation loses the race to a concurrent sign-up
            return taken if len(bases) == 1 else real_unique_username(db, base)

        monkeypatch.setattr(hooks, "unique_username", racing_unique_username)

        _, profile = register_account(session, "alice@elsewhere.org")

        assert profile.username == "alice1"
        assert bases == ["alice", "alice"]

    def test_username_race_is_not_reported_as_duplicate_email(self, session, alice, monkeypatch):
        taken = alice.username
        monkeypatch.setattr(hooks, "unique_username", lambda db, base: taken)

        with pytest.raises(HTTPException) as exc:
            register_account(session, "someone.new@example.com")

        assert exc.value.status_code == 409
        assert "email" not in exc.value.detail
        assert session.exec(select(Account).where(Account.email == "someone.new@example.com")).all() == []
