"""
Accounts, sessions and user profiles.

Credentials live in `accounts`; the supplementary profile (role, username,
wishlist) lives in `users` under the same id. The profile is best-effort: a
user whose profile cannot be read still gets a usable identity, with the role
falling back to the administrator email check.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import Settings
from database import ACCOUNTS, REVOKED_TOKENS, USERS, iso_now, utc_now
from errors import (
    CONFIGURATION_NOT_FOUND,
    EMAIL_IN_USE,
    INVALID_CREDENTIAL,
    INVALID_TOKEN,
    WEAK_PASSWORD,
    AuthError,
)
from schemas import User, UserProfile, UserRole, WishlistUpdate

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
DEFAULT_USERNAME = "User"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        return False


def resolve_role(profile: Dict[str, Any], email: Optional[str], admin_email: str) -> UserRole:
    stored = profile.get("role")
    if stored:
        try:
            return UserRole(stored)
        except ValueError:
            logger.warning("Ignoring unrecognised stored role %r", stored)
    if email and email.lower() == admin_email.lower():
        return UserRole.ADMIN
    return UserRole.USER


def resolve_profile(identity: Dict[str, Any], profile: Dict[str, Any], admin_email: str) -> User:
    """
    Merge the stored profile over the identity record.

    Each field takes the first value present in: persisted profile, identity
    record, hard default.
    """
    email = identity.get("email") or profile.get("email") or ""
    return User(
        id=str(identity["_id"]),
        username=profile.get("username") or identity.get("display_name") or DEFAULT_USERNAME,
        email=email,
        role=resolve_role(profile, email, admin_email),
        created_at=profile.get("created_at") or identity.get("created_at") or iso_now(),
        wishlist=list(profile.get("wishlist") or []),
    )


class AccountService:
    def __init__(self, db: Database, settings: Settings):
        self.accounts = db[ACCOUNTS]
        self.profiles = db[USERS]
        self.revoked = db[REVOKED_TOKENS]
        self.settings = settings

    def _require_configured(self) -> None:
        if not self.settings.jwt_secret:
            raise AuthError(CONFIGURATION_NOT_FOUND)

    def create_access_token(self, user: User) -> str:
        now = utc_now()
        to_encode = {
            "sub": user.id,
            "email": user.email,
            "role": user.role.value,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": now + timedelta(hours=self.settings.access_token_expire_hours),
        }
        return jwt.encode(to_encode, self.settings.jwt_secret, algorithm=self.settings.jwt_alg)

    def _decode(self, token: str) -> Dict[str, Any]:
        self._require_configured()
        try:
            return jwt.decode(token, self.settings.jwt_secret, algorithms=[self.settings.jwt_alg])
        except JWTError:
            raise AuthError(INVALID_TOKEN)

    def _load_profile(self, user_id: str) -> Dict[str, Any]:
        try:
            return self.profiles.find_one({"_id": user_id}) or {}
        except PyMongoError as e:
            logger.warning("Could not fetch profile for %s, using account defaults: %s", user_id, e)
            return {}

    def register(self, username: str, email: str, password: str) -> Tuple[User, str]:
        self._require_configured()
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError(WEAK_PASSWORD)
        email = str(email)
        if self.accounts.find_one({"email": email.lower()}):
            raise AuthError(EMAIL_IN_USE)

        created_at = iso_now()
        account = {
            "email": email.lower(),
            "password_hash": hash_password(password),
            "display_name": username,
            "created_at": created_at,
        }
        try:
            account["_id"] = self.accounts.insert_one(account).inserted_id
        except DuplicateKeyError:
            raise AuthError(EMAIL_IN_USE)

        profile = UserProfile(
            username=username,
            email=email,
            role=resolve_role({}, email, self.settings.admin_email),
            created_at=created_at,
        )
        profile_doc = profile.model_dump(mode="json")
        try:
            self.profiles.replace_one({"_id": str(account["_id"])}, profile_doc, upsert=True)
        except PyMongoError as e:
            logger.warning("Account created but profile for %s was not saved: %s", email, e)
        user = resolve_profile(account, profile_doc, self.settings.admin_email)
        logger.info("Registered %s as %s", user.email, user.role.value)
        return user, self.create_access_token(user)

    def authenticate(self, email: str, password: str) -> Tuple[User, str]:
        self._require_configured()
        account = self.accounts.find_one({"email": str(email).lower()})
        if not account or not verify_password(password, account.get("password_hash", "")):
            raise AuthError(INVALID_CREDENTIAL)
        user = resolve_profile(account, self._load_profile(str(account["_id"])), self.settings.admin_email)
        return user, self.create_access_token(user)

    def current_user(self, token: str) -> Optional[User]:
        """Return the signed-in user for a bearer token, or None for a revoked or unknown session."""
        payload = self._decode(token)
        if self.revoked.find_one({"jti": payload.get("jti")}):
            return None
        try:
            account = self.accounts.find_one({"_id": ObjectId(payload.get("sub"))})
        except (InvalidId, TypeError):
            raise AuthError(INVALID_TOKEN)
        if not account:
            return None
        return resolve_profile(account, self._load_profile(str(account["_id"])), self.settings.admin_email)

    def sign_out(self, token: str) -> None:
        payload = self._decode(token)
        # Removed by the TTL index once the token itself has expired
        expires_at = datetime.fromtimestamp(payload["exp"], timezone.utc)
        self.revoked.update_one(
            {"jti": payload.get("jti")},
            {"$set": {"jti": payload.get("jti"), "expires_at": expires_at}},
            upsert=True,
        )

    def ensure_default_admin(self) -> bool:
        """Create the administrator account from settings if it does not exist yet."""
        email = self.settings.admin_email
        password = self.settings.default_admin_password
        if not email or not password:
            return False
        if self.accounts.find_one({"email": email.lower()}):
            return False
        self.register(self.settings.default_admin_name, email, password)
        return True

    def toggle_wishlist(self, user: User, course_id: int) -> WishlistUpdate:
        """
        Add or remove a course from the user's wishlist.

        The new list is computed from the profile as currently stored. When the
        write fails the returned update carries `saved=False` so the caller can
        show that the change was not kept.
        """
        profile = self._load_profile(user.id)
        current = list(profile["wishlist"] if "wishlist" in profile else user.wishlist)
        if course_id in current:
            wishlist = [cid for cid in current if cid != course_id]
        else:
            wishlist = current + [course_id]
        try:
            self.profiles.update_one({"_id": user.id}, {"$set": {"wishlist": wishlist}}, upsert=True)
        except PyMongoError as e:
            logger.warning("Failed to sync wishlist for %s: %s", user.id, e)
            return WishlistUpdate(wishlist=wishlist, saved=False)
        user.wishlist = wishlist
        return WishlistUpdate(wishlist=wishlist, saved=True)
