from __future__ import annotations

import logging
from typing import Optional

from .cache import MemoryCache, scenario_prefix

logger = logging.getLogger(__name__)


class ScenarioRefresh:
    """Two-phase follow-up for scenario mutations.

    Phase one drops every cached calculation for the scenario and must run
    before the mutating call returns. Phase two asks the dispatcher for a
    recompute and a view refresh; dispatcher failures are logged and dropped.
    """

    def __init__(self, cache: MemoryCache, dispatcher: Optional[object] = None) -> None:
        self.cache = cache
        self.dispatcher = dispatcher

    def invalidate(self, scenario_id: str) -> int:
        return self.cache.invalidate_prefix(scenario_prefix(scenario_id))

    def schedule(self, scenario_id: str, reason: str) -> bool:
        if self.dispatcher is None:
            return False
        try:
            self.dispatcher.enqueue_recompute(scenario_id, reason)
            self.dispatcher.enqueue_view_refresh("all", reason, [scenario_id])
        except Exception as exc:
            logger.warning("could not enqueue refresh for scenario %s (%s): %s", scenario_id, reason, exc)
            return False
        return True

    def after_mutation(self, scenario_id: str, reason: str) -> None:
        self.invalidate(scenario_id)
        self.schedule(scenario_id, reason)
