from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

from .models import AggregatedResult


logger = logging.getLogger(__name__)


class AllWorklistsFailedError(RuntimeError):
    """
    Raised when no tracked worklist produced a count.

    Distinct from every worklist reporting zero: nothing was read, so nothing may be recorded.
    """


def aggregate(raw_counts: Mapping[str, Optional[int]], alertable: Iterable[str]) -> AggregatedResult:
    """
    Normalize unresolved (None) counts to 0 and total the alertable worklists.

    Only worklists in `alertable` contribute to `total`; the others are carried for visibility.
    An empty mapping counts as all-failed.
    """
    unresolved = [name for name, count in raw_counts.items() if count is None]
    if len(unresolved) == len(raw_counts):
        logger.warning("Could not extract case counts from any worklist")
        raise AllWorklistsFailedError("Failed to get case count from portal (all worklists unresolved)")

    if unresolved:
        logger.warning("Treating unresolved worklists as 0: %s", ", ".join(unresolved))

    alertable_set = set(alertable)
    worklists = {name: (count if count is not None else 0) for name, count in raw_counts.items()}
    total = sum(count for name, count in worklists.items() if name in alertable_set)
    return AggregatedResult(worklists=worklists, total=total, unresolved=unresolved)
