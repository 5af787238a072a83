"""
OTP authentication and token lifecycle.

The login flow is:

    fetch_public_key()          GET  /key
    send_otp(email)             POST /sendotpmail   {email}
    validate_otp(email, code)   POST /validateotp   {email, code} -> {token}

Email and code are RSA-OAEP encrypted separately. A successful validation
stores the token in ``auth-state.json`` with a client-side 30 day expiry;
the token itself is never decoded.

All public methods report failure as False/None and log the reason; none of
them prompt. The interactive shell lives in ``tally_sync.login``.
"""
from __future__ import annotations
import contextlib
import json
import os
import threading
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Optional
from loguru import logger
from pydantic import BaseModel, ValidationError

from .backend import BackendClient, UserOrganisation
from .config import SyncConfig
from .crypto import CryptoEnvelope
from .errors import AuthExpired, CryptoError, HttpError, TallySyncError

AUTH_STATE_FILE = "auth-state.json"
STATE_FILE_MODE = 0o600
TOKEN_LIFETIME = timedelta(days=30)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthStage(str, Enum):
    NO_KEY = "no_key"
    KEY_LOADED = "key_loaded"
    OTP_SENT = "otp_sent"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"
    FAILED = "failed"


class AuthState(BaseModel):
    """Persisted session. Unknown fields in the file are ignored."""
    jwt_token: Optional[str] = None
    token_expiry: Optional[datetime] = None
    user_email: Optional[str] = None
    is_authenticated: bool = False
    organisation_id: Optional[int] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.token_expiry is None:
            return False
        expiry = self.token_expiry
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return expiry < (now or utcnow())


class AuthStateStore:
    """Reads and writes auth-state.json under the data directory."""

    def __init__(self, data_dir: Path):
        self.path = Path(data_dir) / AUTH_STATE_FILE

    def load(self) -> Optional[AuthState]:
        """Best-effort load; a missing or corrupt file means no session."""
        if not self.path.exists():
            return None
        try:
            state = AuthState.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Failed to load auth state from {self.path}: {e}")
            return None
        logger.info("Auth state loaded")
        return state

    def save(self, state: AuthState) -> bool:
        """
        Write the state owner-only.

        The JSON goes to a temp file created with mode 600 which then
        replaces the real file, so the token is never readable by others
        and a crash mid-write leaves the previous state intact.
        """
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.unlink(missing_ok=True)
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, STATE_FILE_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(json.dumps(state.model_dump(mode="json"), indent=2))
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to save auth state to {self.path}: {e}")
            with contextlib.suppress(OSError):
                tmp_path.unlink(missing_ok=True)
            return False
        logger.info("Auth state saved")
        return True


class AuthManager:
    """
    Owns the public key cache, the OTP protocol and the persisted session.

    One instance per process, shared by the worker and the login shell.
    State mutation and persistence happen under a lock so a threaded caller
    cannot interleave an expiry check with a fresh login.
    """

    def __init__(
        self,
        backend: BackendClient,
        store: AuthStateStore,
        token_lifetime: timedelta = TOKEN_LIFETIME,
    ):
        self.backend = backend
        self.store = store
        self.token_lifetime = token_lifetime
        self._lock = threading.RLock()
        self._envelope: Optional[CryptoEnvelope] = None
        self._stage = AuthStage.NO_KEY
        self._last_error: Optional[str] = None
        self._state: Optional[AuthState] = store.load()
        if self._state is not None and self._state.is_authenticated:
            self._stage = AuthStage.AUTHENTICATED

    @classmethod
    def from_config(cls, config: SyncConfig, backend_url: Optional[str] = None) -> "AuthManager":
        url = backend_url or config.backend_url
        if not url:
            raise ValueError("Backend URL is not configured; run --setup or pass it to --login")
        backend = BackendClient(url, timeout=config.backend_timeout)
        return cls(backend, AuthStateStore(config.data_path))

    @property
    def stage(self) -> AuthStage:
        return self._stage

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def state(self) -> Optional[AuthState]:
        return self._state

    @property
    def user_email(self) -> Optional[str]:
        return self._state.user_email if self._state else None

    @property
    def organisation_id(self) -> Optional[int]:
        return self._state.organisation_id if self._state else None

    def _fail(self, reason: str) -> bool:
        self._stage = AuthStage.FAILED
        self._last_error = reason
        logger.error(reason)
        return False

    # Public key

    def fetch_public_key(self) -> bool:
        """
        GET /key and cache the key for the process lifetime.

        The body is JSON ``{"key": "..."}`` when well-formed; otherwise the
        raw body is the key. Never raises.
        """
        with self._lock:
            logger.info("Fetching RSA public key from /key endpoint")
            try:
                body = self.backend.get_public_key_text()
            except HttpError as e:
                return self._fail(f"Failed to fetch public key. Status: {e.status_code}")
            except TallySyncError as e:
                return self._fail(f"Error fetching public key: {e}")

            key_text = _extract_key(body)
            try:
                self._envelope = CryptoEnvelope.load(key_text)
            except CryptoError as e:
                preview = key_text[:100] if key_text else ""
                return self._fail(f"Unusable public key ({e}). Key preview: {preview}")

            self._stage = AuthStage.KEY_LOADED
            self._last_error = None
            logger.info("Successfully fetched RSA public key")
            return True

    def _ensure_key(self) -> bool:
        # Single-flight: the lock makes concurrent first callers wait for one fetch
        with self._lock:
            if self._envelope is not None:
                return True
            return self.fetch_public_key()

    def invalidate_public_key(self) -> None:
        with self._lock:
            self._envelope = None

    # OTP

    def send_otp(self, email: str) -> bool:
        """Encrypt the email and ask the backend to mail an OTP to it."""
        if not self._ensure_key():
            logger.error("Cannot send OTP without public key")
            return False

        try:
            encrypted_email = self._envelope.encrypt(email)
        except CryptoError as e:
            return self._fail(f"Error encrypting email: {e}")

        logger.info(f"Sending OTP to email: {email}")
        try:
            self.backend.send_otp(encrypted_email)
        except HttpError as e:
            return self._fail(f"Failed to send OTP. Status: {e.status_code}, Error: {e.body}")
        except TallySyncError as e:
            return self._fail(f"Error sending OTP: {e}")

        self._stage = AuthStage.OTP_SENT
        logger.info(f"OTP sent successfully to {email}")
        return True

    def validate_otp(self, email: str, code: str) -> bool:
        """Exchange an OTP for a token and persist the session."""
        if not self._ensure_key():
            logger.error("Cannot validate OTP without public key")
            return False

        try:
            encrypted_email = self._envelope.encrypt(email)
            encrypted_code = self._envelope.encrypt(code)
        except CryptoError as e:
            return self._fail(f"Error encrypting credentials: {e}")

        logger.info(f"Validating OTP for email: {email}")
        try:
            result = self.backend.validate_otp(encrypted_email, encrypted_code)
        except HttpError as e:
            return self._fail(f"OTP validation failed. Status: {e.status_code}, Error: {e.body}")
        except TallySyncError as e:
            return self._fail(f"Error validating OTP: {e}")

        if not result.token:
            return self._fail("OTP validation returned no token")

        with self._lock:
            self._state = AuthState(
                jwt_token=result.token,
                token_expiry=utcnow() + self.token_lifetime,
                user_email=email,
                is_authenticated=True,
            )
            self.store.save(self._state)
            self._stage = AuthStage.AUTHENTICATED
            self._last_error = None

        logger.info(f"Successfully authenticated for {email}")
        return True

    # Session

    def _check_expiry(self) -> bool:
        """True when the stored session is usable. Flips and persists once on expiry."""
        with self._lock:
            if self._state is None or not self._state.is_authenticated:
                return False
            if self._state.is_expired():
                logger.warning("Token expired. Need to re-authenticate")
                self._state.is_authenticated = False
                self.store.save(self._state)
                self._stage = AuthStage.EXPIRED
                return False
            return bool(self._state.jwt_token)

    def get_valid_token(self) -> Optional[str]:
        if not self._check_expiry():
            logger.warning("Not authenticated")
            return None
        return self._state.jwt_token

    def is_authenticated(self) -> bool:
        return self._check_expiry()

    def require_token(self) -> str:
        """
        Like get_valid_token but raises.

        Raises:
            AuthExpired: If there is no usable session
        """
        token = self.get_valid_token()
        if token is None:
            raise AuthExpired("No valid session; run --login")
        return token

    def fetch_organisations(self) -> list[UserOrganisation]:
        """
        GET /users/orgs for the logged-in user.

        Raises:
            AuthExpired: If there is no usable session
            HttpError: If the backend rejects the request
        """
        token = self.require_token()
        try:
            organisations = self.backend.get_organisations(token)
        except ValueError as e:
            raise HttpError(f"Unexpected organisations response: {e}") from e
        logger.info(f"Found {len(organisations)} organisations")
        return organisations

    def select_organisation(self, organisation_id: int) -> None:
        with self._lock:
            if self._state is None:
                raise AuthExpired("Cannot select an organisation before logging in")
            self._state.organisation_id = organisation_id
            self.store.save(self._state)
        logger.info(f"Organisation set to {organisation_id}")

    def logout(self) -> None:
        with self._lock:
            self._state = AuthState()
            self.store.save(self._state)
            self._stage = AuthStage.KEY_LOADED if self._envelope else AuthStage.NO_KEY
        logger.info("Logged out")


def _extract_key(body: str) -> str:
    """Lenient /key parsing: JSON {"key": ...} or the raw body."""
    try:
        data = json.loads(body)
    except ValueError:
        return body
    if isinstance(data, dict) and isinstance(data.get("key"), str):
        return data["key"]
    return body
