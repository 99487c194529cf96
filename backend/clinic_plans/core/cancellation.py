from __future__ import annotations

import time
from typing import Callable

from clinic_plans.core.errors import OperationCancelled


class CancellationToken:
    """Request-scoped cancellation handle passed down the call chain.

    A token may carry a deadline (seconds from creation on the supplied
    monotonic clock) and can be cancelled explicitly by its owner.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._cancelled = False
        self._deadline = clock() + timeout_seconds if timeout_seconds is not None else None

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled("Operation cancelled by caller")

    def child(self, timeout_seconds: float | None) -> "CancellationToken":
        """Token bounded by ``timeout_seconds`` that also observes this token's cancel flag."""
        return _ChildToken(self, timeout_seconds=timeout_seconds, clock=self._clock)


class _ChildToken(CancellationToken):
    def __init__(
        self,
        parent: CancellationToken,
        *,
        timeout_seconds: float | None,
        clock: Callable[[], float],
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, clock=clock)
        self._parent = parent

    @property
    def cancelled(self) -> bool:
        return self._cancelled or self._parent.cancelled

    @property
    def expired(self) -> bool:
        return super().expired or self._parent.expired

    def raise_if_cancelled(self) -> None:
        self._parent.raise_if_cancelled()
        super().raise_if_cancelled()
