from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from .delta import DeltaEngine
from .errors import ValidationError
from .models import DriftAlert, DriftThreshold, PlanningConfig
from .store import EntityStore

logger = logging.getLogger(__name__)

ALERT_STATUSES = ("ACTIVE", "ACKNOWLEDGED", "RESOLVED")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class DriftService:
    """Threshold checks of locked baselines and the alert lifecycle."""

    def __init__(self, store: EntityStore, deltas: DeltaEngine, config: PlanningConfig) -> None:
        self.store = store
        self.deltas = deltas
        self.config = config

    def get_thresholds(self, period_id: Optional[str] = None) -> DriftThreshold:
        """Period override, else the global row, else configured defaults."""
        if period_id is not None:
            specific = self.store.find_threshold(period_id)
            if specific is not None:
                return specific
        global_row = self.store.find_threshold(None)
        if global_row is not None:
            return global_row
        return DriftThreshold(
            capacity_threshold_pct=self.config.capacity_threshold_pct,
            demand_threshold_pct=self.config.demand_threshold_pct,
        )

    def update_thresholds(
        self,
        capacity_threshold_pct: float,
        demand_threshold_pct: float,
        period_id: Optional[str] = None,
    ) -> DriftThreshold:
        if period_id is not None:
            self.store.get_period(period_id)
        threshold = DriftThreshold(
            capacity_threshold_pct=float(capacity_threshold_pct),
            demand_threshold_pct=float(demand_threshold_pct),
            period_id=period_id,
        )
        return self.store.put_threshold(threshold)

    def check_drift(self, scenario_id: str) -> Dict[str, object]:
        scenario = self.store.get_scenario(scenario_id)
        result: Dict[str, object] = {"scenarioId": scenario_id, "driftsDetected": False, "alert": None}
        if scenario.status != "LOCKED" or scenario.scenario_type != "BASELINE":
            result["reason"] = "not a locked baseline"
            return result
        if self.store.find_snapshot(scenario_id) is None:
            result["reason"] = "no baseline snapshot"
            return result

        delta = self.deltas.compute_delta(scenario_id)
        thresholds = self.get_thresholds(scenario.period_id)
        capacity_pct = float(delta.summary["totalCapacityDriftPct"])  # type: ignore[arg-type]
        demand_pct = float(delta.summary["totalDemandDriftPct"])  # type: ignore[arg-type]
        net_gap = float(delta.summary["netGapDrift"])  # type: ignore[arg-type]
        result.update(
            {
                "capacityDriftPct": capacity_pct,
                "demandDriftPct": demand_pct,
                "netGapDrift": net_gap,
                "thresholds": thresholds.to_dict(),
            }
        )
        exceeded = (
            abs(capacity_pct) > thresholds.capacity_threshold_pct
            or abs(demand_pct) > thresholds.demand_threshold_pct
        )
        if not exceeded:
            return result
        alert = self._upsert_alert(scenario_id, scenario.period_id, capacity_pct, demand_pct, net_gap)
        result["driftsDetected"] = True
        result["alert"] = alert.to_dict()
        return result

    def _upsert_alert(
        self,
        scenario_id: str,
        period_id: str,
        capacity_pct: float,
        demand_pct: float,
        net_gap: float,
    ) -> DriftAlert:
        existing = [
            a
            for a in self.store.alerts()
            if a.scenario_id == scenario_id and a.period_id == period_id and a.status == "ACTIVE"
        ]
        if existing:
            alert = replace(
                existing[0],
                capacity_drift_pct=capacity_pct,
                demand_drift_pct=demand_pct,
                net_gap_drift=net_gap,
                detected_at=_now_iso(),
            )
        else:
            alert = DriftAlert(
                id=uuid.uuid4().hex,
                scenario_id=scenario_id,
                period_id=period_id,
                status="ACTIVE",
                capacity_drift_pct=capacity_pct,
                demand_drift_pct=demand_pct,
                net_gap_drift=net_gap,
                detected_at=_now_iso(),
            )
        logger.info(
            "drift alert for scenario %s period %s: capacity %.2f%%, demand %.2f%%",
            scenario_id,
            period_id,
            capacity_pct,
            demand_pct,
        )
        return self.store.put_alert(alert)

    def check_all_baselines(self) -> List[Dict[str, object]]:
        """Check every locked baseline; one failing scenario does not stop the rest."""
        results = []
        for scenario in self.store.scenarios():
            if scenario.status != "LOCKED" or scenario.scenario_type != "BASELINE":
                continue
            try:
                results.append(self.check_drift(scenario.id))
            except Exception as exc:
                logger.warning("drift check failed for scenario %s: %s", scenario.id, exc)
        return results

    def get_alerts(
        self,
        scenario_id: Optional[str] = None,
        status: Optional[str] = None,
        period_id: Optional[str] = None,
    ) -> List[DriftAlert]:
        if status is not None and status not in ALERT_STATUSES:
            raise ValidationError(f"unknown alert status '{status}'")
        alerts = [
            a
            for a in self.store.alerts()
            if (scenario_id is None or a.scenario_id == scenario_id)
            and (status is None or a.status == status)
            and (period_id is None or a.period_id == period_id)
        ]
        alerts.sort(key=lambda a: a.detected_at, reverse=True)
        return alerts

    def _move(self, alert_ids: Iterable[str], sources: Iterable[str], target: str, stamp_field: str) -> int:
        wanted = set(alert_ids)
        allowed = set(sources)
        moved = 0
        with self.store.transaction():
            for alert in self.store.alerts():
                if alert.id in wanted and alert.status in allowed:
                    self.store.put_alert(replace(alert, status=target, **{stamp_field: _now_iso()}))
                    moved += 1
        return moved

    def acknowledge_alerts(self, alert_ids: Iterable[str]) -> int:
        return self._move(alert_ids, ("ACTIVE",), "ACKNOWLEDGED", "acknowledged_at")

    def resolve_alerts(self, alert_ids: Iterable[str]) -> int:
        return self._move(alert_ids, ("ACTIVE", "ACKNOWLEDGED"), "RESOLVED", "resolved_at")
