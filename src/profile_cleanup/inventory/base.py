"""Base protocol and errors for profile inventory sources."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..models import ProfileRecord


class InventoryError(Exception):
    """The target could not be reached or its profiles could not be enumerated."""


class ProfileDeletionError(InventoryError):
    """A single profile could not be deleted."""


class InvalidHostError(ValueError):
    """A host name is empty or not safe to pass to PowerShell."""


@runtime_checkable
class InventorySource(Protocol):
    """Interface for anything that can list and delete profiles on a host."""

    def list_profiles(self, host: str) -> list[ProfileRecord]:
        """Fetch a point-in-time snapshot of the profiles on a host.

        Args:
            host: Target computer name.

        Returns:
            Profile records, in the order the host reported them.

        Raises:
            InventoryError: If the host cannot be reached or enumerated.

        """
        ...

    def delete_profile(self, host: str, security_id: str) -> None:
        """Delete one profile, identified by its SID.

        Args:
            host: Target computer name.
            security_id: SID of the profile to delete.

        Raises:
            ProfileDeletionError: If the host refused or failed the deletion.

        """
        ...
