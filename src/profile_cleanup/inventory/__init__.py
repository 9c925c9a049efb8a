"""Profile inventory sources."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .base import InvalidHostError, InventoryError, InventorySource, ProfileDeletionError
from .cim import CimProfileSource
from .powershell import create_runner

if TYPE_CHECKING:
    from ..config import CleanupConfig

__all__ = [
    "CimProfileSource",
    "InvalidHostError",
    "InventoryError",
    "InventorySource",
    "ProfileDeletionError",
    "create_inventory_source",
]


def create_inventory_source(
    config: CleanupConfig,
    logger: logging.Logger | None = None,
    password: str | None = None,
) -> InventorySource:
    """Build the CIM-backed source over the runner chosen by config.

    Args:
        config: Cleanup configuration.
        logger: Logger for the source. Defaults to the tool logger.
        password: WinRM password, ignored for the local transport.

    """
    runner = create_runner(config, password)
    return CimProfileSource(runner, logger or logging.getLogger("profile-cleanup"))
