from datetime import datetime, timedelta, timezone

import pytest
from pymongo.errors import PyMongoError

from accounts import resolve_profile, resolve_role
from database import REVOKED_TOKENS
from errors import (
    CONFIGURATION_NOT_FOUND,
    EMAIL_IN_USE,
    INVALID_CREDENTIAL,
    INVALID_TOKEN,
    WEAK_PASSWORD,
    AuthError,
)
from schemas import UserRole

ADMIN_EMAIL = "admin@learnsphere.com"
IDENTITY = {"_id": "abc123", "email": "asha@example.com", "display_name": "Asha K", "created_at": "2024-01-01T00:00:00.000000+00:00"}


def test_role_prefers_persisted_profile():
    assert resolve_role({"role": "admin"}, "someone@example.com", ADMIN_EMAIL) == UserRole.ADMIN
    assert resolve_role({"role": "user"}, ADMIN_EMAIL, ADMIN_EMAIL) == UserRole.USER


def test_role_falls_back_to_admin_email():
    assert resolve_role({}, ADMIN_EMAIL.upper(), ADMIN_EMAIL) == UserRole.ADMIN
    assert resolve_role({}, "asha@example.com", ADMIN_EMAIL) == UserRole.USER
    assert resolve_role({}, None, ADMIN_EMAIL) == UserRole.USER


def test_unrecognised_stored_role_is_ignored():
    assert resolve_role({"role": "Admin"}, "asha@example.com", ADMIN_EMAIL) == UserRole.USER
    assert resolve_role({"role": "owner"}, ADMIN_EMAIL, ADMIN_EMAIL) == UserRole.ADMIN


def test_profile_fields_layer_over_identity():
    user = resolve_profile(IDENTITY, {"username": "asha", "wishlist": [3]}, ADMIN_EMAIL)
    assert user.id == "abc123"
    assert user.username == "asha"
    assert user.created_at == IDENTITY["created_at"]
    assert user.wishlist == [3]
    assert user.role == UserRole.USER


def test_missing_profile_uses_identity_then_defaults():
    user = resolve_profile(IDENTITY, {}, ADMIN_EMAIL)
    assert user.username == "Asha K"
    assert user.wishlist == []

    bare = resolve_profile({"_id": "x", "email": "x@example.com"}, {}, ADMIN_EMAIL)
    assert bare.username == "User"
    assert bare.created_at


def test_register_and_authenticate(accounts):
    user, token = accounts.register("asha", "Asha@Example.com", "secret1")
    assert user.role == UserRole.USER
    assert token

    same, _ = accounts.authenticate("asha@example.com", "secret1")
    assert same.id == user.id
    assert same.username == "asha"


def test_admin_email_registers_as_admin(accounts):
    user, _ = accounts.register("boss", ADMIN_EMAIL, "secret1")
    assert user.role == UserRole.ADMIN


def test_register_rejects_weak_password(accounts):
    with pytest.raises(AuthError) as exc:
        accounts.register("asha", "asha@example.com", "short")
    assert exc.value.code == WEAK_PASSWORD


def test_register_rejects_duplicate_email(accounts):
    accounts.register("asha", "asha@example.com", "secret1")
    with pytest.raises(AuthError) as exc:
        accounts.register("other", "ASHA@example.com", "secret2")
    assert exc.value.code == EMAIL_IN_USE


@pytest.mark.parametrize("email,password", [("asha@example.com", "wrong-pass"), ("nobody@example.com", "secret1")])
def test_authenticate_invalid_credential(accounts, email, password):
    accounts.register("asha", "asha@example.com", "secret1")
    with pytest.raises(AuthError) as exc:
        accounts.authenticate(email, password)
    assert exc.value.code == INVALID_CREDENTIAL
    assert "Invalid Email or Password" in str(exc.value)


def test_unconfigured_secret(accounts):
    accounts.settings = accounts.settings.model_copy(update={"jwt_secret": ""})
    with pytest.raises(AuthError) as exc:
        accounts.authenticate("asha@example.com", "secret1")
    assert exc.value.code == CONFIGURATION_NOT_FOUND


def test_profile_read_failure_keeps_admin_role(accounts, monkeypatch):
    accounts.register("boss", ADMIN_EMAIL, "secret1")

    def unavailable(*args, **kwargs):
        raise PyMongoError("offline")

    monkeypatch.setattr(accounts.profiles, "find_one", unavailable)
    user, _ = accounts.authenticate(ADMIN_EMAIL, "secret1")
    assert user.role == UserRole.ADMIN
    assert user.username == "boss"


def test_current_user_and_sign_out(accounts):
    user, token = accounts.register("asha", "asha@example.com", "secret1")
    assert accounts.current_user(token).id == user.id

    accounts.sign_out(token)
    assert accounts.current_user(token) is None


def test_current_user_rejects_garbage_token(accounts):
    with pytest.raises(AuthError) as exc:
        accounts.current_user("not.a.jwt")
    assert exc.value.code == INVALID_TOKEN


def test_wishlist_toggle_adds_then_removes(accounts):
    user, _ = accounts.register("asha", "asha@example.com", "secret1")

    added = accounts.toggle_wishlist(user, 5)
    assert added.wishlist == [5]
    assert added.saved

    removed = accounts.toggle_wishlist(user, 5)
    assert removed.wishlist == []
    assert accounts.profiles.find_one({"_id": user.id})["wishlist"] == []


def test_wishlist_write_failure_is_reported(accounts, monkeypatch):
    user, _ = accounts.register("asha", "asha@example.com", "secret1")

    def unavailable(*args, **kwargs):
        raise PyMongoError("offline")

    monkeypatch.setattr(accounts.profiles, "update_one", unavailable)
    update = accounts.toggle_wishlist(user, 5)

    assert update.wishlist == [5]
    assert update.saved is False
    assert user.wishlist == []


def test_ensure_default_admin(accounts):
    accounts.settings = accounts.settings.model_copy(update={"default_admin_password": "admin-pass"})
    assert accounts.ensure_default_admin() is True
    assert accounts.ensure_default_admin() is False

    admin, _ = accounts.authenticate(ADMIN_EMAIL, "admin-pass")
    assert admin.role == UserRole.ADMIN


def test_login_survives_unrecognised_stored_role(accounts):
    user, _ = accounts.register("boss", ADMIN_EMAIL, "secret1")
    accounts.profiles.update_one({"_id": user.id}, {"$set": {"role": "Admin"}})

    admin, token = accounts.authenticate(ADMIN_EMAIL, "secret1")
    assert admin.role == UserRole.ADMIN
    assert accounts.current_user(token).role == UserRole.ADMIN


def test_sign_out_records_expiry_for_cleanup(accounts, db):
    _, token = accounts.register("asha", "asha@example.com", "secret1")
    accounts.sign_out(token)

    entry = db[REVOKED_TOKENS].find_one({})
    assert isinstance(entry["expires_at"], datetime)
    assert entry["expires_at"] > datetime.now(timezone.utc).replace(tzinfo=None)

    ttl = [i for i in db[REVOKED_TOKENS].index_information().values() if i["key"] == [("expires_at", 1)]]
    assert ttl and ttl[0]["expireAfterSeconds"] == 0


def test_expired_revocations_are_dropped(db):
    past = datetime.now(timezone.utc) - timedelta(minutes=5)
    db[REVOKED_TOKENS].insert_one({"jti": "old", "expires_at": past})
    assert db[REVOKED_TOKENS].find_one({"jti": "old"}) is None
