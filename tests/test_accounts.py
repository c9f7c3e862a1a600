"""Tests for registration, sign-in and owner lookup."""

import pytest
from sqlalchemy.exc import OperationalError
from werkzeug.security import check_password_hash

import accounts
from app import create_app
from errors import DuplicateAccount, InvalidCredential, NotFound, OwnerNotFound, StoreError, ValidationError
from models import User, db, init_db


class TestRegister:
    def test_register_returns_opaque_id(self, app):
        user_id = accounts.register("a@x.com", "pw")
        assert isinstance(user_id, str)
        assert db.session.get(User, user_id).email == "a@x.com"

    def test_password_is_hashed(self, app):
        user_id = accounts.register("a@x.com", "pw")
        user = db.session.get(User, user_id)
        assert user.password_hash != "pw"
        assert check_password_hash(user.password_hash, "pw")

    def test_duplicate_email_rejected(self, app):
        accounts.register("a@x.com", "pw")
        with pytest.raises(DuplicateAccount):
            accounts.register("a@x.com", "other")

    def test_duplicate_differing_in_case_rejected_by_default(self, app):
        accounts.register("a@x.com", "pw")
        with pytest.raises(DuplicateAccount):
            accounts.register("A@X.com", "pw")

    def test_case_sensitive_signup_allows_case_variant(self):
        app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "EMAIL_CASE_SENSITIVE_SIGNUP": True,
        })
        with app.app_context():
            init_db()
            first = accounts.register("a@x.com", "pw")
            second = accounts.register("A@X.com", "pw")
            assert first != second
            # lookup stays case-insensitive and returns the oldest account
            assert accounts.find_by_email("A@x.COM").id == first
            db.session.remove()
            db.drop_all()

    def test_case_variant_rejected_by_the_database(self, app, monkeypatch):
        # two sign-ups racing past the lookup still collide on lower(email)
        accounts.register("a@x.com", "pw")
        monkeypatch.setattr(accounts, "_email_taken", lambda email: False)
        with pytest.raises(DuplicateAccount):
            accounts.register("A@X.com", "pw")
        assert db.session.execute(db.select(User)).scalars().all()[0].email == "a@x.com"

    def test_store_failure_is_rolled_back(self, app, monkeypatch):
        def broken_commit():
            raise OperationalError("INSERT INTO users", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db.session, "commit", broken_commit)
        with pytest.raises(StoreError):
            accounts.register("a@x.com", "pw")
        assert not db.session.new
        assert accounts.find_by_email("a@x.com") is None

    @pytest.mark.parametrize("email,secret", [("", "pw"), ("a@x.com", ""), (None, "pw"), ("a@x.com", None)])
    def test_missing_credentials(self, app, email, secret):
        with pytest.raises(ValidationError):
            accounts.register(email, secret)


class TestAuthenticate:
    def test_correct_password(self, app):
        user_id = accounts.register("a@x.com", "pw")
        assert accounts.authenticate("a@x.com", "pw") == user_id

    def test_email_case_is_ignored(self, app):
        user_id = accounts.register("a@x.com", "pw")
        assert accounts.authenticate("A@X.com", "pw") == user_id

    def test_wrong_password(self, app):
        accounts.register("a@x.com", "pw")
        with pytest.raises(InvalidCredential):
            accounts.authenticate("a@x.com", "nope")

    def test_unknown_email(self, app):
        with pytest.raises(NotFound):
            accounts.authenticate("ghost@x.com", "pw")


class TestResolveOwner:
    def test_by_email_and_id(self, app, user_id):
        assert accounts.resolve_owner("OWNER@example.com").id == user_id
        assert accounts.resolve_owner(user_id).id == user_id

    def test_unknown_owner(self, app):
        with pytest.raises(OwnerNotFound):
            accounts.resolve_owner("ghost@x.com")
        with pytest.raises(OwnerNotFound):
            accounts.resolve_owner("not-a-user-id")

    def test_missing_identifier(self, app):
        with pytest.raises(ValidationError):
            accounts.resolve_owner(None)
