"""Elapsed-time helper shared by the engine and the step runner."""

import time


class Timer:
    """Track elapsed milliseconds since construction.

    Examples
    --------
    >>> t = Timer()
    >>> t.duration_ms >= 0
    True
    """

    __slots__ = ("_start",)

    def __init__(self) -> None:
        self._start = time.perf_counter()

    @property
    def duration_ms(self) -> float:
        """Elapsed time in milliseconds."""
        return (time.perf_counter() - self._start) * 1000

    @property
    def duration_str(self) -> str:
        """Elapsed milliseconds with two decimals."""
        return f"{self.duration_ms:.2f}"
