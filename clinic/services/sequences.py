import itertools
import threading


class IdSequence:
    """Thread-safe generator of human readable ids such as ``LB-12``."""

    def __init__(self, prefix: str, *, width: int = 0):
        self.prefix = prefix
        self.width = width
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            self._last += 1
            return f"{self.prefix}{str(self._last).zfill(self.width)}"

    def observe(self, ident: str) -> None:
        """Skip past an id loaded from storage."""
        if not ident.startswith(self.prefix):
            return
        digits = ''.join(itertools.takewhile(str.isdigit, ident[len(self.prefix):]))
        if digits:
            with self._lock:
                self._last = max(self._last, int(digits))
