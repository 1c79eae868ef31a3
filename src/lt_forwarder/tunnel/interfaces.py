"""Protocol interface for the tunnel collaborator."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..relay import Connection


class TunnelHandle(Protocol):
    """An established tunnel that hands out downstream connections."""

    @property
    def url(self) -> str:
        """Public URL of the tunnel."""
        ...

    async def accept(self) -> Connection:
        """Wait for the next downstream connection.

        Raises TunnelClosedError once the handle is closed. Any other
        exception is a transient accept failure.
        """
        ...

    async def close(self) -> None:
        """Close the tunnel."""
        ...
