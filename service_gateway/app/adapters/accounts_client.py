"""
Account lookup client for Gateway.

The user-account service owns role and subscription data; the gateway
only reads it to derive an access tier.
"""

from abc import ABC, abstractmethod
from typing import Optional

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import ExternalServiceError
from shared.logging import get_logger

from ..subscriptions.models import Account


class AccountLookup(ABC):
    """Read-only access to user accounts."""

    @abstractmethod
    async def get_account_by_id(self, user_id: str) -> Optional[Account]:
        """Return the account or None when it does not exist."""


class AccountsClient(AccountLookup):
    """Client for communicating with the user-account service."""

    def __init__(self, accounts_service_url: str, *, timeout: float = 2.0,
                 circuit_breaker: Optional[CircuitBreaker] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.accounts_service_url = accounts_service_url.rstrip("/")
        self.logger = get_logger("gateway.accounts_client")
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=3,
            recovery_timeout=30.0,
            name="accounts_service",
        )
        self._client = httpx.AsyncClient(
            base_url=self.accounts_service_url,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def get_account_by_id(self, user_id: str) -> Optional[Account]:
        """Fetch an account by id."""
        async def _fetch() -> Optional[Account]:
            response = await self._client.get(f"/users/{user_id}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return Account.model_validate(response.json())

        try:
            return await self.circuit_breaker.call(_fetch)
        except CircuitBreakerOpenException as e:
            self.logger.warning("Accounts service circuit open", user_id=user_id)
            raise ExternalServiceError("accounts", "circuit open", details={"error": str(e)})
        except httpx.HTTPError as e:
            self.logger.error("Accounts service HTTP error", user_id=user_id, error=str(e))
            raise ExternalServiceError("accounts", "unavailable", details={"http_error": str(e)})
        except ValueError as e:
            self.logger.error("Accounts service returned an invalid account", user_id=user_id, error=str(e))
            raise ExternalServiceError("accounts", "invalid account payload", details={"error": str(e)})
