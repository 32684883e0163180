"""Metrics collection and KPI computation."""

from __future__ import annotations
from collections import Counter
from typing import Dict, List, TYPE_CHECKING

if TYPE_CHECKING:
    import simpy
    from .job import Job

from .config import PRODUCTS, STATIONS, AGVS
from .models import BreakdownEvent, JobEvent, JobEventType, MaterialDelivery, MaterialNeed


class MetricsCollector:
    """Accumulates every event that happens during a simulation run."""

    def __init__(self, env: "simpy.Environment") -> None:
        self.env = env

        # ── Event logs ────────────────────────────────────────────────────────
        self.events:          List[JobEvent]         = []
        self.released_jobs:   List["Job"]            = []
        self.infeasible_jobs: List["Job"]            = []
        self.deliveries:      List[MaterialDelivery] = []
        self.breakdowns:      List[BreakdownEvent]   = []

        # ── Aggregate counters ────────────────────────────────────────────────
        self.event_counts: Counter = Counter()
        self.station_busy: Dict[str, float] = {s: 0.0 for s in STATIONS}

        # ── Latest forecast per job (predictive policy) ───────────────────────
        self.material_needs: Dict[str, List[MaterialNeed]] = {}

        # ── Periodic snapshots (added by the recorder) ────────────────────────
        self.snapshots: List[dict] = []

    # ── Helpers ───────────────────────────────────────────────────────────────

    def record_event(self, event: JobEvent) -> None:
        self.events.append(event)
        self.event_counts[event.kind] += 1
        if event.kind is JobEventType.MATERIAL_NEEDS_CALCULATED:
            self.material_needs[event.job_id] = list(event.payload or [])

    def record_busy(self, station_id: str, seconds: float) -> None:
        self.station_busy[station_id] = self.station_busy.get(station_id, 0.0) + seconds

    @property
    def completed_jobs(self) -> List["Job"]:
        return [j for j in self.released_jobs if j.metrics.completed_at is not None]

    def forecast_needs(self) -> List[MaterialNeed]:
        """Every job's most recent material-need forecast, flattened."""
        return [n for needs in self.material_needs.values() for n in needs]

    # ── KPI computation ───────────────────────────────────────────────────────

    def compute_kpis(self, duration_s: float) -> dict:
        k: dict = {}
        hours = duration_s / 3_600

        # ── Throughput ────────────────────────────────────────────────────────
        done = self.completed_jobs
        k["jobs_released"]   = len(self.released_jobs)
        k["jobs_completed"]  = len(done)
        k["jobs_infeasible"] = len(self.infeasible_jobs)
        k["jobs_in_progress"] = k["jobs_released"] - k["jobs_completed"] - k["jobs_infeasible"]
        k["throughput_per_hr"] = len(done) / hours if hours else 0.0

        k["completed_by_product"] = {
            p: sum(1 for j in done if j.product.name == p) for p in PRODUCTS
        }

        # ── Lead time decomposition ───────────────────────────────────────────
        if done:
            n = len(done)
            k["avg_lead_time_min"]  = sum(j.metrics.total_time for j in done) / n / 60
            k["avg_transport_min"]  = sum(j.metrics.transport_time for j in done) / n / 60
            k["avg_working_min"]    = sum(j.metrics.working_time for j in done) / n / 60
            k["avg_waiting_min"]    = sum(j.metrics.waiting_time for j in done) / n / 60
            k["avg_unaccounted_min"] = sum(j.metrics.unaccounted_time for j in done) / n / 60

            late = [j for j in done if j.metrics.completed_at > j.due_date]
            k["on_time_pct"] = (1 - len(late) / n) * 100
            k["avg_tardiness_min"] = (
                sum(j.metrics.completed_at - j.due_date for j in late) / len(late) / 60
                if late else 0.0
            )
            rush = [j for j in done if j.is_rush]
            k["rush_on_time_pct"] = (
                sum(1 for j in rush if j not in late) / len(rush) * 100 if rush else 100.0
            )
        else:
            for key in ("avg_lead_time_min", "avg_transport_min", "avg_working_min",
                        "avg_waiting_min", "avg_unaccounted_min", "on_time_pct",
                        "avg_tardiness_min", "rush_on_time_pct"):
                k[key] = 0.0

        # ── Stations ──────────────────────────────────────────────────────────
        k["station_utilization"] = {
            s: min(1.0, busy / duration_s) if duration_s else 0.0
            for s, busy in self.station_busy.items()
        }
        util = list(k["station_utilization"].values())
        k["avg_station_utilization_pct"] = sum(util) / len(util) * 100 if util else 0.0

        # ── Material flow ─────────────────────────────────────────────────────
        arrived = [d for d in self.deliveries if d.arrived_at is not None]
        k["deliveries"]           = len(arrived)
        k["deliveries_cancelled"] = sum(1 for d in self.deliveries if d.cancelled)
        k["avg_delivery_lead_s"]  = (
            sum(d.lead_time for d in arrived) / len(arrived) if arrived else 0.0
        )
        k["deliveries_by_agv"] = {
            v: sum(1 for d in arrived if d.vehicle_id == v) for v in AGVS
        }
        k["material_pending_events"] = self.event_counts[JobEventType.MATERIAL_PENDING]
        k["forecasts"]               = self.event_counts[JobEventType.MATERIAL_NEEDS_CALCULATED]

        # ── Disruptions ───────────────────────────────────────────────────────
        k["aborted_plans"]     = self.event_counts[JobEventType.ABORTED]
        k["total_breakdowns"]  = len(self.breakdowns)
        k["breakdown_minutes"] = sum(b.repair_duration for b in self.breakdowns) / 60
        k["breakdowns_by_station"] = {
            s: sum(1 for b in self.breakdowns if b.station_id == s) for s in STATIONS
        }

        return k
