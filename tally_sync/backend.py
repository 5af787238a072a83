"""
HTTP client for the Tally Sync backend.

Thin wrapper over requests.Session: every call has a timeout, non-2xx
answers raise HttpError, transport failures raise TallyConnectionError.
"""
from __future__ import annotations
from typing import Any, Optional
import requests
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from .errors import HttpError, TallyConnectionError

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "tally-sync/1.0",
}

KEY_PATH = "/key"
SEND_OTP_PATH = "/sendotpmail"
VALIDATE_OTP_PATH = "/validateotp"
ORGANISATIONS_PATH = "/users/orgs"
INGEST_PATH = "/api/data"


class UserOrganisation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: int
    organisation_id: int
    organisation_code: str = Field(default="", alias="OrganisationCode")


class TokenResponse(BaseModel):
    token: Optional[str] = None


class BackendClient:
    """Calls the backend endpoints used by login and sync."""

    def __init__(self, base_url: str, timeout: int = 30, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = self._url(path)
        kwargs.setdefault("timeout", self.timeout)
        try:
            r = self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise TallyConnectionError(f"{method} {url} failed: {e}") from e

        if not 200 <= r.status_code < 300:
            raise HttpError(
                f"{method} {path} returned {r.status_code}",
                status_code=r.status_code,
                body=r.text,
            )
        return r

    def get_public_key_text(self) -> str:
        """GET /key and return the raw body."""
        return self._request("GET", KEY_PATH).text

    def send_otp(self, encrypted_email: str) -> None:
        self._request("POST", SEND_OTP_PATH, json={"email": encrypted_email})

    def validate_otp(self, encrypted_email: str, encrypted_code: str) -> TokenResponse:
        r = self._request(
            "POST",
            VALIDATE_OTP_PATH,
            json={"email": encrypted_email, "code": encrypted_code},
        )
        try:
            return TokenResponse.model_validate(r.json())
        except ValueError:
            logger.warning("OTP validation response was not a token object")
            return TokenResponse()

    def get_organisations(self, token: str) -> list[UserOrganisation]:
        # Raw token, no Bearer prefix
        r = self._request("GET", ORGANISATIONS_PATH, headers={"Authorization": token})
        return [UserOrganisation.model_validate(row) for row in r.json()]

    def ingest(self, token: str, payload: dict[str, Any]) -> requests.Response:
        """POST an exported table to the ingest endpoint."""
        return self._request(
            "POST",
            INGEST_PATH,
            json=payload,
            headers={"Authorization": token},
        )

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
