"""
BaseConnector — Shared lifecycle of the engine's two collaborators.

The orchestrator calls ``setup()`` on the notification bridge and the
ledger when it starts and ``teardown()`` when it stops. ``health_check()``
lets a host app check a collaborator before trusting it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class BaseConnector(ABC):
    """
    Subclasses set ``name`` (log/error identifier, e.g. ``"http_ledger"``)
    and ``description``, and override the lifecycle hooks they need.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    description: str = ""

    async def setup(self) -> None:
        """Called by ``ReconciliationOrchestrator.start()``."""

    async def teardown(self) -> None:
        """Called by ``ReconciliationOrchestrator.stop()``."""

    async def health_check(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
