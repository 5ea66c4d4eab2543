"""Cooperative cancellation shared by the orchestrator and search layers."""

from relink_mcp.errors import Aborted


class CancellationToken:
    """A flag checked at checkpoints; never interrupts a request in flight.

    A token created with ``any_of`` reports cancelled as soon as any of its
    parents does, which is how a run token and a caller token are combined.
    """

    def __init__(self, *parents: "CancellationToken"):
        self._cancelled = False
        self._parents = parents

    @classmethod
    def any_of(cls, *tokens: "CancellationToken | None") -> "CancellationToken":
        return cls(*(t for t in tokens if t is not None))

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled or any(p.cancelled for p in self._parents)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise Aborted()
