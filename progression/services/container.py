"""
Service Container - Dependency Injection Container

Wires the progression components around one Progress Store and one catalog.
Components are lazy-loaded on first access, replacing process-wide
singletons with instances owned by process bootstrap.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging

from progression.db.store import ProgressStore
from progression.gamification.catalog import AchievementCatalog
from progression.services.notifications import Notifier

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """
    Simple dependency injection container for the progression engine.

    Infrastructure dependencies (store, catalog, notifier) are injected;
    components are lazy-loaded via properties.
    """

    # Infrastructure dependencies (injected)
    store: ProgressStore
    catalog: AchievementCatalog
    notifier: Optional[Notifier] = None

    # Components (lazy-loaded via properties)
    _streak_tracker: Optional[object] = field(default=None, init=False, repr=False)
    _evaluator: Optional[object] = field(default=None, init=False, repr=False)
    _dispatcher: Optional[object] = field(default=None, init=False, repr=False)
    _stats: Optional[object] = field(default=None, init=False, repr=False)
    _gateway: Optional[object] = field(default=None, init=False, repr=False)
    _progression_service: Optional[object] = field(default=None, init=False, repr=False)

    @property
    def streak_tracker(self):
        """Get StreakTracker instance (lazy-loaded)"""
        if self._streak_tracker is None:
            from progression.gamification.streak_tracker import StreakTracker
            self._streak_tracker = StreakTracker(self.store)
            logger.debug("StreakTracker instantiated")
        return self._streak_tracker

    @property
    def evaluator(self):
        """Get AchievementEvaluator instance (lazy-loaded)"""
        if self._evaluator is None:
            from progression.gamification.achievement_evaluator import AchievementEvaluator
            self._evaluator = AchievementEvaluator(self.store, self.catalog)
            logger.debug("AchievementEvaluator instantiated")
        return self._evaluator

    @property
    def dispatcher(self):
        """Get RewardDispatcher instance (lazy-loaded)"""
        if self._dispatcher is None:
            from progression.gamification.reward_dispatcher import RewardDispatcher
            self._dispatcher = RewardDispatcher(
                self.store,
                self.catalog,
                self.notifier,
                default_freeze_count=self.streak_tracker.default_freeze_count
            )
            logger.debug("RewardDispatcher instantiated")
        return self._dispatcher

    @property
    def stats(self):
        """Get StatsAggregator instance (lazy-loaded)"""
        if self._stats is None:
            from progression.gamification.stats_aggregator import StatsAggregator
            self._stats = StatsAggregator(self.store, self.catalog)
            logger.debug("StatsAggregator instantiated")
        return self._stats

    @property
    def gateway(self):
        """Get EventIngestGateway instance (lazy-loaded)"""
        if self._gateway is None:
            from progression.services.ingest_gateway import EventIngestGateway
            self._gateway = EventIngestGateway(
                self.store,
                self.streak_tracker,
                self.evaluator,
                self.dispatcher
            )
            logger.debug("EventIngestGateway instantiated")
        return self._gateway

    @property
    def progression_service(self):
        """Get ProgressionService instance (lazy-loaded)"""
        if self._progression_service is None:
            from progression.services.progression_service import ProgressionService
            self._progression_service = ProgressionService(
                store=self.store,
                catalog=self.catalog,
                gateway=self.gateway,
                streak_tracker=self.streak_tracker,
                dispatcher=self.dispatcher,
                stats=self.stats
            )
            logger.debug("ProgressionService instantiated")
        return self._progression_service


# Global container instance (initialized at startup)
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """
    Get the global service container.

    Raises:
        RuntimeError: If container not initialized (call init_container first)
    """
    if _container is None:
        raise RuntimeError(
            "Service container not initialized. "
            "Call init_container() at startup before using services."
        )
    return _container


def init_container(
    store: ProgressStore,
    catalog: AchievementCatalog,
    notifier: Optional[Notifier] = None
) -> ServiceContainer:
    """
    Initialize the global service container.

    Should be called once at startup after the store is ready.

    Args:
        store: Progress store instance
        catalog: Loaded achievement catalog
        notifier: Notification channel (defaults to logging)

    Returns:
        ServiceContainer: The initialized container
    """
    global _container

    _container = ServiceContainer(store=store, catalog=catalog, notifier=notifier)

    logger.info("Service container initialized")
    return _container


def reset_container() -> None:
    """Drop the global container (shutdown and tests)"""
    global _container
    _container = None
