"""
Cost tracking for paid acquisition tiers.

Tracks request counts and spend per tier against a shared budget, with
alert thresholds and optional JSON persistence.
"""

import json
import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from jobwaterfall.config import CostConfig
from jobwaterfall.normalizer.schemas import SourceTier
from jobwaterfall.utils.exceptions import BudgetExhaustedError

logger = logging.getLogger(__name__)


def default_tier_costs() -> dict[str, float]:
    return {
        SourceTier.PRIMARY_SOURCE.value: CostConfig.PRIMARY_COST_PER_REQUEST,
        SourceTier.GENERATIVE.value: CostConfig.GENERATIVE_COST_PER_REQUEST,
    }


class CostTracker:
    """
    Thread-safe budget tracker for paid tiers.

    One instance is shared by everything that spends against the same
    budget; it is passed in rather than looked up globally.

    Features:
        - Per-tier cost per request
        - Budget guard raising BudgetExhaustedError before a paid call
        - Alert levels at 50%, 80% and 95% of the budget
        - Optional persistence in JSON format
        - Budget exhaustion prediction based on daily averages

    Alert Thresholds:
        - 50%: WARNING - Budget half consumed
        - 80%: CRITICAL - Budget mostly consumed
        - 95%: DANGER - Budget nearly exhausted
    """

    def __init__(
        self,
        budget_limit: Optional[float] = None,
        tier_costs: Optional[dict[str, float]] = None,
        storage_path: Optional[Path] = None,
    ):
        """
        Initialize cost tracker.

        Args:
            budget_limit: Total budget in USD (defaults to CostConfig.TOTAL_BUDGET)
            tier_costs: Cost per request keyed by tier name
            storage_path: JSON file for persistence (None keeps data in memory only)
        """
        self._request_lock = threading.Lock()

        self.budget_limit = budget_limit if budget_limit is not None else CostConfig.TOTAL_BUDGET
        self.tier_costs = dict(tier_costs) if tier_costs is not None else default_tier_costs()

        self.warning_threshold = 0.50
        self.critical_threshold = 0.80
        self.danger_threshold = 0.95

        self.storage_path = Path(storage_path) if storage_path else None

        self.total_requests = 0
        self.total_cost = 0.0
        self.successful_requests = 0
        self.failed_requests = 0
        self.start_date = datetime.now().isoformat()

        self.requests_by_tier: dict[str, int] = {}
        self.cost_by_tier: dict[str, float] = {}
        self.requests_by_date: dict[str, int] = {}
        self.daily_costs: dict[str, float] = {}

        self._last_alert_level = "ok"
        self._load_data()

    def _load_data(self) -> None:
        """Load tracking data from JSON file."""
        if self.storage_path is None or not self.storage_path.exists():
            return

        try:
            with open(self.storage_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Could not load cost tracking data: {e}")
            return

        self.total_requests = data.get("total_requests", 0)
        self.total_cost = data.get("total_cost", 0.0)
        self.successful_requests = data.get("successful_requests", 0)
        self.failed_requests = data.get("failed_requests", 0)
        self.start_date = data.get("start_date", self.start_date)
        self.requests_by_tier = data.get("requests_by_tier", {})
        self.cost_by_tier = data.get("cost_by_tier", {})
        self.requests_by_date = data.get("requests_by_date", {})
        self.daily_costs = data.get("daily_costs", {})
        self._last_alert_level = self._get_alert_level(self._usage_ratio())

    def _save_data(self) -> None:
        """Persist tracking data to JSON file."""
        if self.storage_path is None:
            return

        data = {
            "total_requests": self.total_requests,
            "total_cost": self.total_cost,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "start_date": self.start_date,
            "requests_by_tier": self.requests_by_tier,
            "cost_by_tier": self.cost_by_tier,
            "requests_by_date": self.requests_by_date,
            "daily_costs": self.daily_costs,
            "budget_limit": self.budget_limit,
            "tier_costs": self.tier_costs,
            "last_updated": datetime.now().isoformat(),
        }

        try:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.storage_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.warning(f"Could not save cost tracking data: {e}")

    def cost_for(self, tier: str) -> float:
        """Cost of one request to ``tier`` (0.0 for free tiers)."""
        return self.tier_costs.get(tier, 0.0)

    def _usage_ratio(self) -> float:
        return self.total_cost / self.budget_limit if self.budget_limit > 0 else 1.0

    def can_make_request(self, tier: str) -> bool:
        """
        Check if a request to ``tier`` fits within the budget.

        Returns:
            True if the request can be made

        Raises:
            BudgetExhaustedError: If the request would exceed the budget
        """
        projected_cost = self.total_cost + self.cost_for(tier)

        if projected_cost > self.budget_limit:
            raise BudgetExhaustedError(
                message="Budget exhausted - cannot make more paid requests",
                tier=tier,
                total_cost=round(self.total_cost, 4),
                budget_limit=self.budget_limit,
            )

        return True

    def record_request(self, tier: str, label: str = "", success: bool = True) -> dict:
        """
        Record a paid request and update all tracking metrics.

        Args:
            tier: Tier that made the request (e.g. 'primary_source')
            label: Free-form label such as the keyword searched
            success: Whether the request succeeded

        Returns:
            Dictionary with updated statistics and alert information

        Example:
            >>> tracker = CostTracker(budget_limit=1.0)
            >>> tracker.record_request("primary_source", "sales")["alert_level"]
            'ok'
        """
        cost = self.cost_for(tier)

        with self._request_lock:
            self.total_requests += 1
            self.total_cost += cost

            if success:
                self.successful_requests += 1
            else:
                self.failed_requests += 1

            self.requests_by_tier[tier] = self.requests_by_tier.get(tier, 0) + 1
            self.cost_by_tier[tier] = self.cost_by_tier.get(tier, 0.0) + cost

            today = datetime.now().strftime("%Y-%m-%d")
            self.requests_by_date[today] = self.requests_by_date.get(today, 0) + 1
            self.daily_costs[today] = self.daily_costs.get(today, 0.0) + cost

            usage_ratio = self._usage_ratio()
            alert_level = self._get_alert_level(usage_ratio)
            if alert_level != self._last_alert_level and alert_level != "ok":
                logger.warning(
                    f"Budget alert: {alert_level} ({usage_ratio * 100:.1f}% used)",
                    extra={"total_cost": round(self.total_cost, 4), "budget_limit": self.budget_limit},
                )
            self._last_alert_level = alert_level

            self._save_data()

            return {
                "request_count": self.total_requests,
                "total_cost": round(self.total_cost, 4),
                "budget_remaining": round(self.budget_limit - self.total_cost, 4),
                "budget_used_pct": round(usage_ratio * 100, 2),
                "alert_level": alert_level,
                "success": success,
                "tier": tier,
                "label": label,
                "timestamp": datetime.now().isoformat(),
            }

    def _get_alert_level(self, usage_ratio: float) -> str:
        """
        Determine alert level based on budget usage.

        Returns:
            Alert level: 'ok', 'warning', 'critical', or 'danger'
        """
        if usage_ratio >= self.danger_threshold:
            return "danger"
        elif usage_ratio >= self.critical_threshold:
            return "critical"
        elif usage_ratio >= self.warning_threshold:
            return "warning"
        else:
            return "ok"

    def get_statistics(self) -> dict:
        """
        Get usage statistics and predictions.

        Returns:
            Dictionary containing usage metrics, budget status, per-tier
            and per-date breakdowns and an exhaustion prediction
        """
        usage_ratio = self._usage_ratio()

        start = datetime.fromisoformat(self.start_date)
        days_elapsed = max(1, (datetime.now() - start).days + 1)
        daily_average_cost = self.total_cost / days_elapsed

        remaining_budget = self.budget_limit - self.total_cost
        days_until_exhaustion = (
            remaining_budget / daily_average_cost if daily_average_cost > 0 else None
        )

        success_rate = (
            (self.successful_requests / self.total_requests * 100)
            if self.total_requests > 0 else 0
        )

        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "success_rate_pct": round(success_rate, 2),
            "total_cost": round(self.total_cost, 4),
            "budget_limit": self.budget_limit,
            "budget_remaining": round(remaining_budget, 4),
            "budget_used_pct": round(usage_ratio * 100, 2),
            "alert_level": self._get_alert_level(usage_ratio),
            "thresholds": {
                "warning": f"{int(self.warning_threshold * 100)}%",
                "critical": f"{int(self.critical_threshold * 100)}%",
                "danger": f"{int(self.danger_threshold * 100)}%",
            },
            "tracking_start_date": self.start_date,
            "days_elapsed": days_elapsed,
            "daily_average_cost": round(daily_average_cost, 4),
            "prediction": {
                "days_until_exhaustion": (
                    round(days_until_exhaustion, 1) if days_until_exhaustion is not None else None
                ),
                "estimated_exhaustion_date": (
                    (datetime.now() + timedelta(days=days_until_exhaustion)).strftime("%Y-%m-%d")
                    if days_until_exhaustion is not None else None
                ),
            },
            "requests_by_tier": dict(self.requests_by_tier),
            "cost_by_tier": {k: round(v, 4) for k, v in self.cost_by_tier.items()},
            "requests_by_date": dict(self.requests_by_date),
            "tier_costs": dict(self.tier_costs),
        }

    def reset(self, confirm: bool = True) -> dict:
        """
        Reset all tracking data and statistics.

        Args:
            confirm: Safety flag requiring explicit confirmation

        Returns:
            Dictionary with pre-reset statistics and confirmation message

        Raises:
            ValueError: If confirm=False
        """
        if not confirm:
            raise ValueError("Reset requires explicit confirmation (confirm=True)")

        final_stats = self.get_statistics()

        with self._request_lock:
            self.total_requests = 0
            self.total_cost = 0.0
            self.successful_requests = 0
            self.failed_requests = 0
            self.start_date = datetime.now().isoformat()
            self.requests_by_tier.clear()
            self.cost_by_tier.clear()
            self.requests_by_date.clear()
            self.daily_costs.clear()
            self._last_alert_level = "ok"
            self._save_data()

        logger.info("Cost tracker reset")
        return {
            "message": "Cost tracker reset successfully",
            "reset_timestamp": datetime.now().isoformat(),
            "previous_statistics": final_stats,
        }

    def __repr__(self) -> str:
        return (
            f"CostTracker(spent=${self.total_cost:.4f}, budget=${self.budget_limit:.2f}, "
            f"requests={self.total_requests})"
        )
