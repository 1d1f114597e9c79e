"""Resolve Aura API client credentials from the referenced secret."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import AuraControllerError, CredentialNotFoundError, InvalidCredentialError, NotFoundError
from .models import AuraInstance
from .state import SecretStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ClientCredentials:
    client_id: str
    client_secret: str

    def __repr__(self) -> str:
        return f"ClientCredentials(client_id={self.client_id!r}, client_secret='***')"


class CredentialResolver:
    """Reads the client id/secret pair named by ``spec.secret``."""

    def __init__(self, secrets: SecretStore) -> None:
        self._secrets = secrets

    def resolve(self, instance: AuraInstance) -> ClientCredentials:
        reference = instance.spec.secret
        try:
            secret = self._secrets.get(instance.metadata.namespace, reference.name)
        except NotFoundError as exc:
            raise CredentialNotFoundError(f"failed to get secret: {exc}") from exc
        except AuraControllerError as exc:
            raise AuraControllerError(f"failed to get secret: {exc}") from exc

        id_key = reference.id_key
        secret_key = reference.secret_key
        client_id = secret.data.get(id_key, "")
        client_secret = secret.data.get(secret_key, "")
        if not client_id or not client_secret:
            raise InvalidCredentialError(f"secret must contain {id_key} and {secret_key} keys")
        logger.debug("Resolved Aura credentials for '%s' from secret '%s'", instance.key, reference.name)
        return ClientCredentials(client_id=client_id, client_secret=client_secret)
