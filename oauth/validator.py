"""Live credential check run before a session is created."""

import logging
from functools import partial
from typing import Callable

from caspio_client import CaspioAPIError, CaspioAuthError, CaspioClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str, str], CaspioClient]


class CredentialValidationError(Exception):
    """Supplied Caspio credentials could not be used against the backend."""


def make_client_factory(timeout: float, transport=None) -> ClientFactory:
    """Build CaspioClient instances with shared transport settings."""
    return partial(_new_client, timeout=timeout, transport=transport)


def _new_client(base_url: str, client_id: str, client_secret: str, timeout: float, transport=None) -> CaspioClient:
    return CaspioClient(base_url, client_id, client_secret, timeout=timeout, transport=transport)


class CredentialValidator:
    """Confirms credentials with a token exchange plus a trivial read."""

    def __init__(self, client_factory: ClientFactory):
        self.client_factory = client_factory

    async def validate(self, base_url: str, client_id: str, client_secret: str) -> None:
        """Raise CredentialValidationError unless the credentials work."""
        if not base_url.startswith(("https://", "http://")):
            raise CredentialValidationError("Caspio Base URL must start with https://")

        async with self.client_factory(base_url, client_id, client_secret) as client:
            try:
                await client.authenticate()
                await client.list_tables()
            except CaspioAuthError as e:
                if e.status_code is None:
                    logger.info(f"[AUTH] Caspio unreachable at {base_url}: {e}")
                    raise CredentialValidationError(f"Connection failed: {e}") from e
                logger.info(f"[AUTH] Credential check rejected for {base_url}: {e.status_code}")
                raise CredentialValidationError(
                    "Failed to connect to Caspio. Please check your credentials."
                ) from e
            except CaspioAPIError as e:
                logger.info(f"[AUTH] Credential check failed for {base_url}: {e}")
                raise CredentialValidationError(f"Connection failed: {e}") from e

        logger.info(f"[AUTH] Credentials verified for {base_url}")
