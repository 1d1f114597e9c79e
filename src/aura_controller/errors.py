"""Error taxonomy for reconciliation passes.

Every error raised inside a pass derives from :class:`AuraControllerError`.
The controller turns them into a ``Ready=False`` condition carrying ``str(exc)``
verbatim, so messages must name the offending key, status code or owner.
"""
from __future__ import annotations

from dataclasses import dataclass


class AuraControllerError(RuntimeError):
    """Base class for all errors scoped to a single reconciliation pass."""


class NotFoundError(AuraControllerError):
    """Raised by stores when an object does not exist."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f'{kind} "{name}" not found')
        self.kind = kind
        self.name = name


class ConflictError(AuraControllerError):
    """Raised by stores when an optimistic-concurrency precondition fails."""


class CredentialNotFoundError(AuraControllerError):
    """The referenced credential secret does not exist."""


class InvalidCredentialError(AuraControllerError):
    """The credential secret exists but lacks a usable client id or secret."""


class TransportFailureError(AuraControllerError):
    """Network failure or timeout while talking to an upstream endpoint."""


class CreateFollowupFailedError(AuraControllerError):
    """The remote instance was created but local bookkeeping failed."""


class OwnershipMismatchError(AuraControllerError):
    """Refused to delete a connection secret owned by another object."""

    def __init__(self, owner_uid: str) -> None:
        super().__init__(f"failed to delete secret, owner uid {owner_uid} does not match")
        self.owner_uid = owner_uid


@dataclass
class UpstreamRejectedError(AuraControllerError):
    """The Aura API answered with an unexpected status code."""

    operation: str
    status_code: int
    body: str

    def __str__(self) -> str:
        return f"failed to {self.operation}, request failed with code {self.status_code} - {self.body}"


@dataclass
class TokenExchangeError(AuraControllerError):
    """The OAuth2 token endpoint rejected the client credentials."""

    status_code: int
    body: str

    def __str__(self) -> str:
        return f"failed to acquire access token, request failed with code {self.status_code} - {self.body}"
