"""
Access-token lifecycle: expiry checks, refresh-on-demand and code exchange
"""

import base64
import hashlib
import secrets
import threading
import time
from concurrent.futures import Future
from typing import Optional, Tuple

import jwt
import requests

from .config import OAuthConfig
from .credential_store import CredentialStore
from .errors import PersistenceFailure, TokenEndpointError, TokenExchangeFailed, TokenRefreshFailed
from .logging_utils import get_logger
from .models import TokenPair

logger = get_logger(__name__)

ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"


def is_expired(token: Optional[str], now: Optional[float] = None) -> bool:
    """
    Check whether an access token is unusable.

    Args:
        token: JWT access token
        now: Current epoch seconds (defaults to time.time())

    Returns:
        True if the token is absent, cannot be decoded, or its exp claim is at
        or before now
    """
    if not token:
        return True
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        logger.warning(f"Could not decode access token: {e}")
        return True
    try:
        expires_at = float(claims.get("exp") or 0)
    except (TypeError, ValueError):
        return True
    current = time.time() if now is None else now
    return current >= expires_at


def generate_pkce_pair() -> Tuple[str, str]:
    """Return (code_verifier, S256 code_challenge) for an authorization-code login"""
    verifier = secrets.token_urlsafe(64)[:96]
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    return verifier, challenge


class TokenLifecycleManager:
    """Owns the stored token pair and refreshes it on demand"""

    def __init__(self, store: CredentialStore, cfg: OAuthConfig, key_prefix: str = ""):
        self.store = store
        self.cfg = cfg
        self._access_key = f"{key_prefix}{ACCESS_TOKEN_KEY}"
        self._refresh_key = f"{key_prefix}{REFRESH_TOKEN_KEY}"
        self._lock = threading.Lock()
        self._inflight: Optional[Future] = None

    # Storage

    def store_tokens(self, access_token: str, refresh_token: Optional[str]) -> None:
        self.store.set(self._access_key, access_token)
        if refresh_token:
            self.store.set(self._refresh_key, refresh_token)
        logger.info("Tokens stored")

    def get_stored_tokens(self) -> Tuple[Optional[str], Optional[str]]:
        try:
            return self.store.get(self._access_key), self.store.get(self._refresh_key)
        except PersistenceFailure as e:
            logger.error(f"Failed to read stored tokens: {e}")
            return None, None

    def clear_tokens(self) -> None:
        try:
            self.store.delete(self._access_key)
            self.store.delete(self._refresh_key)
            logger.info("Tokens cleared")
        except PersistenceFailure as e:
            logger.error(f"Failed to clear tokens: {e}")

    def sign_out(self) -> None:
        self.clear_tokens()

    def is_authenticated(self) -> bool:
        return self.get_valid() is not None

    # Token endpoint

    def _post_token_request(self, data: dict) -> dict:
        response = requests.post(
            self.cfg.token_url,
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=self.cfg.timeout_s,
        )
        if not response.ok:
            raise TokenEndpointError(response.status_code, response.text)
        return response.json()

    def refresh(self, refresh_token: str, client_id: Optional[str] = None) -> TokenPair:
        """
        Exchange a refresh token for a new access token and persist the pair.

        The previous refresh token is kept when the server does not rotate it.

        Raises:
            TokenRefreshFailed: on a non-success response or transport error
        """
        logger.info("Refreshing access token...")
        try:
            payload = self._post_token_request({
                "grant_type": "refresh_token",
                "client_id": client_id or self.cfg.client_id,
                "refresh_token": refresh_token,
                "audience": self.cfg.audience,
                "scope": self.cfg.scope,
            })
        except TokenEndpointError as e:
            logger.error(f"Failed to refresh token: {e.status} {e.body}")
            raise TokenRefreshFailed(e.status, e.body) from e
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Failed to refresh token: {e}")
            raise TokenRefreshFailed(None, str(e)) from e

        access_token = payload.get("access_token")
        if not access_token:
            raise TokenRefreshFailed(None, "Response did not include an access_token")
        pair = TokenPair(access_token=access_token,
                         refresh_token=payload.get("refresh_token") or refresh_token)
        self.store_tokens(pair.access_token, pair.refresh_token)
        logger.info("Token refresh successful")
        return pair

    def _refresh_single_flight(self, refresh_token: str, client_id: Optional[str]) -> TokenPair:
        """
        Collapse concurrent refreshes into one request whose outcome every caller shares.

        A caller holding a refresh token that another caller already rotated
        gets the stored pair instead of replaying the stale token.
        """
        with self._lock:
            future = self._inflight
            owner = future is None
            if owner:
                stored_access, stored_refresh = self.get_stored_tokens()
                if stored_access and not is_expired(stored_access):
                    logger.debug("Token pair already refreshed by another caller")
                    return TokenPair(access_token=stored_access, refresh_token=stored_refresh)
                if stored_refresh and stored_refresh != refresh_token:
                    refresh_token = stored_refresh
                future = Future()
                self._inflight = future

        if not owner:
            logger.debug("Joining in-flight token refresh")
            return future.result()

        try:
            pair = self.refresh(refresh_token, client_id)
            future.set_result(pair)
            return pair
        except Exception as e:
            future.set_exception(e)
            raise
        finally:
            with self._lock:
                self._inflight = None

    def get_valid(self, client_id: Optional[str] = None) -> Optional[str]:
        """
        Return a usable access token, refreshing it if needed.

        Never raises. Returns None when there is no token or refresh is
        impossible, in which case the stored pair is cleared.
        """
        try:
            access_token, refresh_token = self.get_stored_tokens()
            if not access_token:
                logger.info("No access token found")
                return None

            if not is_expired(access_token):
                return access_token

            logger.warning("Access token expired, attempting refresh...")
            if not refresh_token:
                logger.error("No refresh token available")
                self.clear_tokens()
                return None

            try:
                return self._refresh_single_flight(refresh_token, client_id).access_token
            except TokenRefreshFailed:
                stored_access, stored_refresh = self.get_stored_tokens()
                if stored_refresh != refresh_token:
                    # Rotated by another caller while this refresh failed
                    logger.warning("Token refresh failed but the stored pair changed, keeping it")
                    return stored_access if not is_expired(stored_access) else None
                logger.error("Token refresh failed, clearing tokens")
                self.clear_tokens()
                return None
        except Exception as e:
            logger.error(f"Failed to get valid access token: {e}")
            return None

    def exchange_code(self, code: str, code_verifier: str, redirect_uri: Optional[str] = None,
                      client_id: Optional[str] = None) -> TokenPair:
        """
        Exchange an authorization code (PKCE) for a token pair and persist it.

        Raises:
            TokenExchangeFailed: on a non-success response or transport error
        """
        logger.info("Exchanging authorization code for tokens...")
        try:
            payload = self._post_token_request({
                "grant_type": "authorization_code",
                "client_id": client_id or self.cfg.client_id,
                "code": code,
                "code_verifier": code_verifier,
                "redirect_uri": redirect_uri or self.cfg.redirect_uri,
            })
        except TokenEndpointError as e:
            logger.error(f"Failed to exchange code for tokens: {e.status} {e.body}")
            raise TokenExchangeFailed(e.status, e.body) from e
        except (requests.RequestException, ValueError) as e:
            raise TokenExchangeFailed(None, str(e)) from e

        access_token = payload.get("access_token")
        if not access_token:
            raise TokenExchangeFailed(None, "Response did not include an access_token")
        pair = TokenPair(access_token=access_token, refresh_token=payload.get("refresh_token"))
        self.store_tokens(pair.access_token, pair.refresh_token)
        logger.info("Token exchange successful")
        return pair

    def build_authorize_url(self, code_challenge: str, state: Optional[str] = None) -> str:
        params = {
            "response_type": "code",
            "client_id": self.cfg.client_id,
            "redirect_uri": self.cfg.redirect_uri,
            "scope": self.cfg.scope,
            "audience": self.cfg.audience,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        if state:
            params["state"] = state
        return requests.Request("GET", self.cfg.authorize_url, params=params).prepare().url
