"""
Expiry Scanner - which Pacts need recovery right now.

Pure filter, no I/O. A Pact whose interval is still unknown (0) is never
selected: the reducer defaults the interval to 0 until enrichment, and that
must not read as "instant expiry".
"""

from typing import Iterable

from .pact import Pact


def scan(now: int, pacts: Iterable[Pact]) -> list[Pact]:
    """Return the expired subset, preserving input order. Boundary now == deadline is not expired."""
    expired = []
    for pact in pacts:
        interval = pact.check_in_interval
        if not interval:
            continue
        if pact.last_check_in + interval < now:
            expired.append(pact)
    return expired
