"""
Secret Manager service for resolving credential references in connector
configurations.

Connector options may reference credentials as ``${NAME}`` placeholders.
``NAME`` is looked up in Google Secret Manager as a secret named after it
(``CRM_API_KEY`` -> ``crm-api-key``), falling back to the environment.
"""

import logging
import os
import re
from typing import Any, Dict, Optional
from google.cloud import secretmanager

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def secret_name_for(variable: str) -> str:
    """Secret Manager name for a placeholder variable."""
    return variable.lower().replace("_", "-")


class SecretManagerService:
    """Service for retrieving secrets from Google Secret Manager."""

    def __init__(self, project_id: Optional[str] = None):
        """Initialize Secret Manager service."""
        self.project_id = project_id or os.getenv("GOOGLE_CLOUD_PROJECT")
        if not self.project_id:
            raise ValueError("GOOGLE_CLOUD_PROJECT environment variable must be set")

        self.client = secretmanager.SecretManagerServiceClient()
        self._cache: Dict[str, str] = {}

    def get_secret(self, secret_name: str, version: str = "latest") -> str:
        """Retrieve a secret value from Secret Manager."""
        cache_key = f"{secret_name}:{version}"

        if cache_key in self._cache:
            return self._cache[cache_key]

        try:
            secret_path = f"projects/{self.project_id}/secrets/{secret_name}/versions/{version}"
            response = self.client.access_secret_version(request={"name": secret_path})
            secret_value = response.payload.data.decode("UTF-8")

            # Cache the value
            self._cache[cache_key] = secret_value
            logger.info(f"Retrieved secret: {secret_name}")
            return secret_value

        except Exception as e:
            logger.error(f"Failed to retrieve secret {secret_name}: {e}")
            raise


class CredentialResolver:
    """
    Replaces ``${NAME}`` placeholders in connector options with credentials.

    Args:
        secret_service: Optional Secret Manager service; without it only the
            environment is consulted
    """

    def __init__(self, secret_service: Optional[SecretManagerService] = None):
        self.secret_service = secret_service

    def lookup(self, variable: str) -> str:
        if self.secret_service is not None:
            try:
                return self.secret_service.get_secret(secret_name_for(variable))
            except Exception as e:
                logger.warning(f"Secret for {variable} unavailable, falling back to environment: {e}")

        value = os.getenv(variable)
        if value is None:
            raise ConfigurationError(f"No secret or environment variable found for ${{{variable}}}")
        return value

    def resolve(self, options: Any) -> Any:
        """Return a copy of ``options`` with every placeholder substituted."""
        if isinstance(options, str):
            return PLACEHOLDER_PATTERN.sub(lambda match: self.lookup(match.group(1)), options)
        if isinstance(options, dict):
            return {key: self.resolve(value) for key, value in options.items()}
        if isinstance(options, list):
            return [self.resolve(value) for value in options]
        return options
