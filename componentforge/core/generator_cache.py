"""Fingerprint-keyed cache of ready-to-invoke manifest generators.

Building a generator means downloading, extracting and possibly decrypting
an archive, so concurrent requests for the same fingerprint must share one
build:

- the map lock guards the entry and in-flight maps only and is never held
  while a build runs;
- the first caller for a fingerprint registers a ``threading.Event`` and
  builds; later callers wait on that event and then look again;
- a failed build is not cached; it wakes the waiters, which then try to
  build themselves.

Every hit slides the entry's expiry by the validity period.  A lookup
that finds an expired entry drops it and builds again; ``sweep()``, run
periodically by a background thread between ``start()`` and ``stop()``,
releases expired entries nobody asks for.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from componentforge.core.generators import ManifestGenerator

logger = logging.getLogger(__name__)

DEFAULT_VALIDITY = 3600.0
DEFAULT_SWEEP_INTERVAL = 10.0


@dataclass
class CacheEntry:
    generator: ManifestGenerator
    valid_until: float


class GeneratorCache:
    """Process-lifetime generator cache.

    Parameters
    ----------
    validity:
        Seconds an entry stays valid after its last use.
    sweep_interval:
        Seconds between background sweeps.
    clock:
        Monotonic clock in seconds; tests inject a fake one.
    """

    def __init__(
        self,
        validity: float = DEFAULT_VALIDITY,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._validity = validity
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}
        self._in_flight: dict[str, threading.Event] = {}
        self._stopped = threading.Event()
        self._sweeper: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_or_build(
        self, fingerprint: str, build: Callable[[], ManifestGenerator]
    ) -> ManifestGenerator:
        """Return the cached generator for *fingerprint*, building it if needed.

        Exceptions raised by *build* propagate to the caller that ran it.
        """
        while True:
            with self._lock:
                now = self._clock()
                entry = self._entries.get(fingerprint)
                if entry is not None and entry.valid_until < now:
                    del self._entries[fingerprint]
                    logger.debug("Evicted generator %s", fingerprint[:12])
                    entry = None
                if entry is not None:
                    entry.valid_until = now + self._validity
                    logger.debug("Generator cache hit for %s", fingerprint[:12])
                    return entry.generator
                pending = self._in_flight.get(fingerprint)
                if pending is None:
                    pending = threading.Event()
                    self._in_flight[fingerprint] = pending
                    break
            logger.debug("Waiting for in-flight build of %s", fingerprint[:12])
            pending.wait()

        logger.debug("Generator cache miss for %s", fingerprint[:12])
        try:
            generator = build()
        except BaseException:
            with self._lock:
                del self._in_flight[fingerprint]
            pending.set()
            raise

        with self._lock:
            self._entries[fingerprint] = CacheEntry(generator, self._clock() + self._validity)
            del self._in_flight[fingerprint]
        pending.set()
        return generator

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, fingerprint: object) -> bool:
        with self._lock:
            return fingerprint in self._entries

    def entry(self, fingerprint: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(fingerprint)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Remove expired entries; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [fp for fp, entry in self._entries.items() if entry.valid_until < now]
            for fingerprint in expired:
                del self._entries[fingerprint]
        for fingerprint in expired:
            logger.debug("Evicted generator %s", fingerprint[:12])
        return len(expired)

    def start(self) -> None:
        """Start the background sweeper.  Idempotent."""
        if self._sweeper is not None:
            return
        self._stopped.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, name="generator-cache-sweeper", daemon=True
        )
        self._sweeper.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop the background sweeper and wait for it to exit."""
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is None:
            return
        self._stopped.set()
        sweeper.join(timeout)

    def _sweep_loop(self) -> None:
        while not self._stopped.wait(self._sweep_interval):
            self.sweep()

    def __enter__(self) -> GeneratorCache:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
