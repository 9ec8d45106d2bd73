"""Interface to the host note application."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class VaultHost(Protocol):
    """Vault operations provided by the host application."""

    async def search(self, query: str, limit: int) -> dict[str, Any]:
        """Search note titles and content; returns {"results": [...]}."""
        ...

    async def open_note(self, path: str) -> None:
        """Open a note in the host UI."""
        ...
