"""Monthly budget state machine shared by every paid provider call"""

from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional
import threading

from ..exceptions import BackingStoreError, BudgetExceeded
from ..storage.database import utc_now
from ..storage.repositories import AlertRepository, UsageRepository
from ..storage.tables import AlertType
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

PROVIDER_CLASSES = ("embedding", "rerank", "contradiction")


class BudgetState(str, Enum):
    UNDER_BUDGET = "under_budget"
    WARNED = "warned"
    LIMITED = "limited"


def month_start(now: datetime) -> datetime:
    return datetime(now.year, now.month, 1)


class BudgetGuard:
    """
    Tracks spend for the current calendar month (UTC) and forces fallback
    to free providers once the budget is exhausted.

    State moves under_budget -> warned -> limited and resets when a new
    month starts. Spend and alert state are reloaded from the backing store
    on the first use in each period, so a restarted process that already hit
    the limit stays limited. All counter updates happen under one lock:
    a threshold crossing is observed by exactly one caller.
    """

    def __init__(
        self,
        usage_repository: UsageRepository,
        alert_repository: AlertRepository,
        monthly_budget: float = 10.0,
        warning_ratio: float = 0.8,
        enable_alerts: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.usage_repository = usage_repository
        self.alert_repository = alert_repository
        self.monthly_budget = monthly_budget
        self.warning_ratio = warning_ratio
        self.enable_alerts = enable_alerts
        self._clock = clock

        self._lock = threading.Lock()
        self._period_start: Optional[datetime] = None
        self._spend = 0.0
        self._alerted: set = set()
        self._state = BudgetState.UNDER_BUDGET

    @property
    def warning_threshold(self) -> float:
        return self.monthly_budget * self.warning_ratio

    @property
    def state(self) -> BudgetState:
        with self._lock:
            self._sync_period()
            return self._state

    @property
    def current_spend(self) -> float:
        with self._lock:
            self._sync_period()
            return self._spend

    @property
    def period_start(self) -> datetime:
        with self._lock:
            self._sync_period()
            return self._period_start

    def is_fallback_forced(self, provider_class: str = "embedding") -> bool:
        """True when paid providers of this class must be replaced by free ones"""
        if provider_class not in PROVIDER_CLASSES:
            raise ValueError(f"Unknown provider class: {provider_class}")
        return self.state is BudgetState.LIMITED

    def ensure_within_budget(self, provider_class: str = "embedding") -> None:
        """
        Raises:
            BudgetExceeded: If fallback is forced for this provider class
        """
        if self.is_fallback_forced(provider_class):
            raise BudgetExceeded(provider_class, self.current_spend, self.monthly_budget)

    def record_spend(
        self, cost: float, persist: Optional[Callable[[], object]] = None
    ) -> List[str]:
        """
        Add ``cost`` to the period's spend and evaluate thresholds atomically.

        Args:
            cost: USD spent by one usage event
            persist: Optional callable that stores the usage record; runs under the lock

        Returns:
            Alert types raised by this call (at most one of each per period)
        """
        with self._lock:
            self._sync_period()
            if persist is not None:
                persist()
            self._spend += cost
            return self._check_locked()

    def check_thresholds(self) -> List[str]:
        """Evaluate thresholds against the current spend"""
        with self._lock:
            self._sync_period()
            return self._check_locked()

    def _sync_period(self) -> None:
        period = month_start(self._clock())
        if period == self._period_start:
            return

        previous = self._period_start
        self._period_start = period
        self._spend = self.usage_repository.total_cost_since(period)
        self._alerted = self.alert_repository.types_in_period(period)

        if AlertType.LIMIT_REACHED in self._alerted or self._spend >= self.monthly_budget:
            self._state = BudgetState.LIMITED
        elif AlertType.WARNING in self._alerted or self._spend >= self.warning_threshold:
            self._state = BudgetState.WARNED
        else:
            self._state = BudgetState.UNDER_BUDGET

        if previous is not None:
            logger.info(f"New budget period {period:%Y-%m}: state reset to {self._state.value}")
        else:
            logger.debug(
                f"Budget period {period:%Y-%m} loaded: ${self._spend:.4f} spent, "
                f"state={self._state.value}"
            )

    def _check_locked(self) -> List[str]:
        raised = []

        if self._spend >= self.monthly_budget:
            self._state = BudgetState.LIMITED
            if AlertType.LIMIT_REACHED not in self._alerted and self._raise_alert(
                AlertType.LIMIT_REACHED
            ):
                raised.append(AlertType.LIMIT_REACHED)
                logger.error(
                    f"Monthly budget reached: ${self._spend:.4f} of ${self.monthly_budget:.2f}. "
                    f"Fallback mode activated for {', '.join(PROVIDER_CLASSES)}"
                )

        elif self._spend >= self.warning_threshold:
            if self._state is BudgetState.UNDER_BUDGET:
                self._state = BudgetState.WARNED
            if AlertType.WARNING not in self._alerted and self._raise_alert(AlertType.WARNING):
                raised.append(AlertType.WARNING)
                logger.warning(
                    f"Budget warning: ${self._spend:.4f} spent "
                    f"({self._spend / self.monthly_budget:.0%} of ${self.monthly_budget:.2f})"
                )

        return raised

    def _raise_alert(self, alert_type: str) -> bool:
        """Store the alert, then mark it raised; a failed insert is retried on the next check"""
        if self.enable_alerts:
            try:
                self.alert_repository.add(
                    alert_type=alert_type,
                    threshold=self.monthly_budget,
                    spend_at_trigger=self._spend,
                    period_start=self._period_start,
                )
            except BackingStoreError as e:
                logger.error(f"Could not store {alert_type} alert: {e}")
                return False
        self._alerted.add(alert_type)
        return True
