"""
OAuth2 credential bootstrap and rotation for simulated subjects.

A subject's app obtains its first credentials through a pairing flow driven
by an administrator:

1. password grant as the admin → admin access token
2. pairing request for the subject login → meta-token name
3. meta-token exchange → refresh token (single use)
4. refresh grant → access token and a *new* refresh token
5. refresh grant again, proving that rotation works

Refresh tokens are single use, so the pair stored in the cache is always
replaced as a whole with the latest one returned by the server.

Key Concepts Demonstrated:
- Each step is a hard dependency of the next (fail fast)
- Client authentication with HTTP Basic for token requests
- Per-login locking so two sessions never spend the same refresh token
"""

from __future__ import annotations

import logging

from ingestion_perf.cache import SharedRegistryCache, TokenPair
from ingestion_perf.client import (
    ApiClient,
    basic_auth_headers,
    bearer_headers,
    json_object,
    require_field,
)
from ingestion_perf.config import RunConfig
from ingestion_perf.errors import DataError

logger = logging.getLogger(__name__)

TOKEN_PATH = "/managementportal/oauth/token"
API = "/managementportal/api"


class TokenBroker:
    """
    Obtain and rotate OAuth2 tokens against the management API.

    Args:
        api: HTTP facade bound to the platform base URL.
        config: Run configuration holding client and admin credentials.
        cache: Run cache receiving the subjects' token pairs.
    """

    def __init__(self, api: ApiClient, config: RunConfig, cache: SharedRegistryCache):
        self._api = api
        self._config = config
        self._cache = cache

    def password_grant(self) -> str:
        """Authenticate as the configured admin and return an access token."""
        request_name = "Authentication"
        response = self._api.post(
            TOKEN_PATH,
            name=request_name,
            headers=basic_auth_headers(self._config.client_id, self._config.client_secret),
            data={
                "grant_type": "password",
                "client_id": self._config.client_id,
                "username": self._config.admin_username,
                "password": self._config.admin_password,
            },
        )
        return require_field(json_object(response, request_name), "access_token", request_name)

    def pair(self, admin_token: str, login: str) -> str:
        """Request a pairing for *login* and return the meta-token name."""
        request_name = "PairApp - Get meta token"
        response = self._api.get(
            f"{API}/oauth-clients/pair",
            name=request_name,
            params={
                "clientId": self._config.pair_client_id,
                "login": login,
                "persistent": "true",
            },
            headers=bearer_headers(admin_token),
        )
        return require_field(json_object(response, request_name), "tokenName", request_name)

    def exchange_meta_token(self, admin_token: str, meta_token: str) -> str:
        """Spend *meta_token* and return the refresh token it carries."""
        request_name = "PairApp - Get refresh token"
        response = self._api.get(
            f"{API}/meta-token/{meta_token}",
            name=request_name,
            headers=bearer_headers(admin_token),
        )
        return require_field(json_object(response, request_name), "refreshToken", request_name)

    def refresh_grant(self, refresh_token: str, *, request_name: str = "Request Token for App") -> TokenPair:
        """
        Spend *refresh_token* and return the newly issued pair.

        Raises:
            ProtocolError: If the server rejects the token (already used or
                revoked).
        """
        response = self._api.post(
            TOKEN_PATH,
            name=request_name,
            headers=basic_auth_headers(
                self._config.pair_client_id, self._config.pair_client_secret
            ),
            data={"grant_type": "refresh_token", "refresh_token": refresh_token},
        )
        body = json_object(response, request_name)
        pair = TokenPair(
            access_token=require_field(body, "access_token", request_name),
            refresh_token=require_field(body, "refresh_token", request_name),
        )
        if pair.refresh_token == refresh_token:
            raise DataError(f"{request_name}: refresh token was not rotated")
        return pair

    def bootstrap(self, admin_token: str, login: str) -> TokenPair:
        """
        Run the full pairing chain for *login* and cache the final pair.

        Returns:
            The pair issued by the second refresh grant.
        """
        meta_token = self.pair(admin_token, login)
        refresh_token = self.exchange_meta_token(admin_token, meta_token)
        first = self.refresh_grant(refresh_token)
        latest = self.refresh_grant(first.refresh_token, request_name="Renew Token for App")
        self._cache.put_tokens(login, latest)
        logger.info("Bootstrapped credentials for subject %s", login)
        return latest

    def refresh(self, login: str, stale_access_token: str | None = None) -> TokenPair:
        """
        Rotate the cached pair of *login*.

        Holds the login's lock while the refresh token is being spent.  When
        *stale_access_token* is given and another session already replaced
        it, the newer cached pair is returned without a request.

        Raises:
            DataError: If no pair is cached for *login*.
        """
        with self._cache.token_lock(login):
            current = self._cache.require_tokens(login)
            if stale_access_token is not None and current.access_token != stale_access_token:
                return current
            pair = self.refresh_grant(current.refresh_token, request_name="Renew Token for App")
            self._cache.put_tokens(login, pair)
        logger.info("Rotated credentials for subject %s", login)
        return pair
