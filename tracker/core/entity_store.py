"""
Entity store: the latest snapshot and the dashboard derived from it.

Every change signal triggers a full re-fetch followed by a full recompute;
there is no incremental path. A failed fetch keeps the previous snapshot
(or the empty one) and records a human-readable error that is served
alongside the stale views until the next successful fetch.
"""

import logging
from typing import Callable, List, Optional

from tracker.core.aggregator import Aggregator
from tracker.core.data_source import DataSource, DataSourceError
from tracker.core.store import Dashboard, EntitySnapshot

logger = logging.getLogger(__name__)

GENERIC_FETCH_ERROR = (
    "Database connection error. Please check your database configuration "
    "and ensure the schema has been set up."
)


class EntityStore:
    """
    Holds the current snapshot and recomputes derived views on change.

    Parameters
    ----------
    source : DataSource
        Where snapshots are read from and change events come from
    aggregator : Optional[Aggregator]
        Pipeline used to derive the dashboard (default: built-in config)
    """

    def __init__(self, source: DataSource, aggregator: Optional[Aggregator] = None):
        self.source = source
        self.aggregator = aggregator or Aggregator()
        self.snapshot = EntitySnapshot.empty()
        self.error: Optional[str] = None
        self.dashboard: Dashboard = self.aggregator.create_dashboard(self.snapshot)
        self.version_counter = 0

        self._listeners: List[Callable[[Dashboard], None]] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> Dashboard:
        """Subscribe to change events and perform the initial load."""
        if self._unsubscribe is None:
            self._unsubscribe = self.source.on_change(self.refresh)
            logger.info("Subscribed to data source change events")
        return self.refresh()

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.info("Unsubscribed from data source change events")

    def refresh(self) -> Dashboard:
        """
        Re-fetch everything and rebuild the dashboard.

        Never raises for fetch failures: the error is recorded, the previous
        snapshot is retained and the dashboard is recomputed from it.

        Returns
        -------
        Dashboard
            Freshly computed dashboard (stale if the fetch failed)
        """
        try:
            snapshot = self.source.fetch_snapshot()
        except DataSourceError as e:
            self.error = str(e) or GENERIC_FETCH_ERROR
            logger.warning(
                f"Snapshot fetch failed, keeping v{self.snapshot.version}: {self.error}"
            )
        except Exception as e:
            self.error = GENERIC_FETCH_ERROR
            logger.error(f"Unexpected error fetching snapshot: {e}", exc_info=True)
        else:
            self.version_counter += 1
            snapshot.version = self.version_counter
            self.snapshot = snapshot
            self.error = None

        self.dashboard = self.aggregator.create_dashboard(self.snapshot, error=self.error)
        for listener in list(self._listeners):
            listener(self.dashboard)
        return self.dashboard

    def add_listener(self, listener: Callable[[Dashboard], None]) -> Callable[[], None]:
        """Be told about every recomputed dashboard; returns an unsubscribe handle."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def set_aggregator(self, aggregator: Aggregator) -> Dashboard:
        """Swap the pipeline (e.g. after a config reload) and recompute."""
        self.aggregator = aggregator
        self.dashboard = self.aggregator.create_dashboard(self.snapshot, error=self.error)
        return self.dashboard
