"""Cooperative cancellation for running imports."""

from __future__ import annotations

from relaysync.core.errors import CancellationRequested


class CancelToken:
    """Checked by the pipeline at every phase and page boundary."""

    def __init__(self) -> None:
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "import cancelled") -> None:
        if self._reason is None:
            self._reason = reason

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise CancellationRequested(self._reason)
