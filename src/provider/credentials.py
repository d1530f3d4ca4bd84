"""Credentials for the Azure Resource Manager client.

Authentication uses managed identity: the provider never reads client
secrets or passwords. Developer workstations may opt into
DefaultAzureCredential (Azure CLI login and friends), which still keeps
secrets out of the provider's own configuration.

INVARIANTS:
1. A client secret or password in the environment blocks credential creation
2. ManagedIdentityCredential is used unless a developer credential is requested
"""

from __future__ import annotations

import logging
import os

from azure.core.credentials import TokenCredential
from azure.identity import DefaultAzureCredential, ManagedIdentityCredential
from azure.mgmt.resource import ResourceManagementClient

from .config import ConfigurationError, ProviderConfig

logger = logging.getLogger(__name__)

# Environment variables that mean a secret was handed to the process
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
)


class CredentialError(Exception):
    """Raised when credentials would be built from secrets."""

    pass


def check_no_secrets() -> None:
    """Refuse to run with secret-bearing environment variables.

    Raises:
        CredentialError: If any forbidden variable is set.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Secret found in environment",
                extra={"env_var": env_var, "action": "credential_blocked"},
            )
            raise CredentialError(
                f"{env_var} is set. Use a managed identity instead of secrets."
            )


def get_credential(
    client_id: str | None = None,
    *,
    developer: bool = False,
) -> TokenCredential:
    """Build the credential for ARM calls.

    Args:
        client_id: Client ID of a user-assigned managed identity. None uses
                   the system-assigned identity.
        developer: Use DefaultAzureCredential (local development).

    Raises:
        CredentialError: If secrets are present in the environment.
    """
    check_no_secrets()

    if developer:
        logger.info("Using developer credential chain")
        return DefaultAzureCredential(exclude_environment_credential=True)

    if client_id:
        logger.info(
            "Using user-assigned managed identity",
            extra={"client_id": client_id[:8] + "..." if len(client_id) > 8 else client_id},
        )
        return ManagedIdentityCredential(client_id=client_id)

    logger.info("Using system-assigned managed identity")
    return ManagedIdentityCredential()


def build_resource_client(
    config: ProviderConfig,
    credential: TokenCredential | None = None,
) -> ResourceManagementClient:
    """Build the ARM client for the configured subscription.

    Raises:
        ConfigurationError: If no subscription is configured.
        CredentialError: If secrets are present in the environment.
    """
    if not config.subscription_id:
        raise ConfigurationError("AZURE_SUBSCRIPTION_ID is required for the ARM client")

    return ResourceManagementClient(
        credential=credential or get_credential(os.environ.get("AZURE_CLIENT_ID")),
        subscription_id=config.subscription_id,
    )
