from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Optional

from genie_studio.services.orchestrator import CANCEL_REASON_EVICTED, Subscription

logger = logging.getLogger("session_store")


class SubscriptionStore:
    """
    Subscriptions the HTTP layer can still answer GET/DELETE for.

    The orchestrator forgets a session as soon as it is terminal; the UI may
    ask for the result afterwards, so the newest `limit` subscriptions are
    kept here. Oldest finished entries are evicted first. A still-running
    session pushed out of the store is canceled, since nothing could reach
    it afterwards.
    """

    def __init__(self, limit: int = 200) -> None:
        self.limit = max(1, int(limit))
        self._items: "OrderedDict[str, Subscription]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._items)

    def add(self, sub: Subscription) -> None:
        self._items[sub.session_id] = sub
        self._items.move_to_end(sub.session_id)
        self._evict()

    def get(self, session_id: str) -> Optional[Subscription]:
        return self._items.get(session_id)

    def _evict(self) -> None:
        if len(self._items) <= self.limit:
            return
        for sid in [k for k, s in self._items.items() if s.closed]:
            if len(self._items) <= self.limit:
                return
            del self._items[sid]
        while len(self._items) > self.limit:
            sid, sub = self._items.popitem(last=False)
            logger.warning("running_session_evicted", extra={"session_id": sid, "job_id": sub.job_id})
            sub.cancel(CANCEL_REASON_EVICTED)
