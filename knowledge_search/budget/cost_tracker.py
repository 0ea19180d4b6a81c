"""Usage recording and spend reporting for paid providers"""

from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .budget_guard import BudgetGuard, month_start
from .pricing import OPERATIONS, PriceTable
from ..storage.database import utc_now
from ..storage.repositories import AlertRepository, UsageRepository
from ..storage.tables import UsageRecord
from ..utils.logger import setup_logger

logger = setup_logger(__name__)

PERIODS = ("day", "month")


class CostTracker:
    """
    Records provider usage off the caller's thread.

    ``record_usage`` returns immediately with a Future; the single worker
    prices the event, appends a usage record and lets the budget guard
    evaluate thresholds. Failures are logged and never reach the caller
    (the Future resolves to None).
    """

    def __init__(
        self,
        usage_repository: UsageRepository,
        alert_repository: AlertRepository,
        budget_guard: BudgetGuard,
        price_table: PriceTable,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.usage_repository = usage_repository
        self.alert_repository = alert_repository
        self.budget_guard = budget_guard
        self.price_table = price_table
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cost-tracker")

    def record_usage(
        self,
        provider: str,
        operation: str,
        units: int,
        model: Optional[str] = None,
        collection_id: Optional[str] = None,
    ) -> Future:
        """
        Queue one usage event.

        Args:
            provider: Provider name (e.g. "openai")
            operation: "embed", "rerank" or "completion"
            units: Tokens consumed (requests for rerank)
            model: Model name, for reporting
            collection_id: Collection the usage is attributed to

        Returns:
            Future resolving to the stored UsageRecord, or None if recording failed
        """
        try:
            return self._executor.submit(
                self._record, provider, operation, units, model, collection_id
            )
        except RuntimeError as e:
            # Executor already shut down
            logger.error(f"Dropped usage event for {provider}/{operation}: {e}")
            future: Future = Future()
            future.set_result(None)
            return future

    def _record(
        self,
        provider: str,
        operation: str,
        units: int,
        model: Optional[str],
        collection_id: Optional[str],
    ) -> Optional[UsageRecord]:
        try:
            if operation not in OPERATIONS:
                raise ValueError(f"Unknown operation: {operation}")
            cost = self.price_table.calculate_cost(provider, operation, units)
            stored: List[UsageRecord] = []

            def persist():
                stored.append(
                    self.usage_repository.add(
                        provider=provider,
                        operation=operation,
                        units=units,
                        cost=cost,
                        model=model,
                        collection_id=collection_id,
                        created_at=self._clock(),
                    )
                )

            self.budget_guard.record_spend(cost, persist)
            logger.debug(f"Usage recorded: {provider}/{operation} {units} units, ${cost:.6f}")
            return stored[0] if stored else None

        except Exception as e:
            logger.error(f"Failed to record usage for {provider}/{operation}: {e}")
            return None

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every queued usage event has been processed"""
        self._executor.submit(lambda: None).result(timeout=timeout)

    def period_start(self, period: str = "month") -> datetime:
        now = self._clock()
        if period == "month":
            return month_start(now)
        if period == "day":
            return datetime(now.year, now.month, now.day)
        raise ValueError(f"Unknown period: {period} (expected one of {PERIODS})")

    def current_spend(self, period: str = "month") -> float:
        return self.usage_repository.total_cost_since(self.period_start(period))

    def breakdown(self, period: str = "month") -> List[Dict[str, Any]]:
        return self.usage_repository.breakdown_since(self.period_start(period))

    def summary(self, period: str = "month") -> Dict[str, Any]:
        """Spend against the monthly budget, with a per provider/operation breakdown"""
        spend = self.current_spend(period)
        budget = self.budget_guard.monthly_budget
        return {
            "period": period,
            "current_spend": round(spend, 6),
            "budget": budget,
            "percentage_used": round(spend / budget * 100, 2) if budget > 0 else 100.0,
            "remaining": round(max(budget - spend, 0.0), 6),
            "state": self.budget_guard.state.value,
            "breakdown": self.breakdown(period),
        }

    def recent_alerts(self, limit: int = 10) -> List[Dict[str, Any]]:
        return [
            {
                "id": alert.id,
                "alert_type": alert.alert_type,
                "threshold": alert.threshold,
                "spend_at_trigger": alert.spend_at_trigger,
                "period_start": alert.period_start.isoformat(),
                "acknowledged": alert.acknowledged,
                "created_at": alert.created_at.isoformat(),
            }
            for alert in self.alert_repository.recent(limit)
        ]

    def acknowledge_alert(self, alert_id: int) -> bool:
        return self.alert_repository.acknowledge(alert_id)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
