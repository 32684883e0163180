"""
Robust batch scheduler for the AGV fleet.

Offline counterpart of the live dispatch: given a table of delivery jobs with
duration estimates and two deadlines each, find a job order that keeps the
probability-weighted tardiness low.  Jobs are sorted by their probable
deadline, the first ``n_vehicles`` seed one vehicle each, and the rest are
inserted batch by batch: every permutation of a batch is tried on every
retained candidate, and only ``b`` candidates survive to the next batch
(beam search).  The surviving slots are filled so that the beam of a smaller
``b`` is a prefix of the beam of a larger one; widening the beam can only
improve the best weighted delay.

Every job goes to the vehicle that is back first; a vehicle is back after
twice the job duration (out and return).
"""

from __future__ import annotations

import bisect
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, NamedTuple, Sequence, Tuple

from .models import MaterialNeed

log = logging.getLogger(__name__)


class Deadline(NamedTuple):
    time:        float
    probability: float


@dataclass(frozen=True)
class JobEstimate:
    earliest: float
    latest:   float

    def nominal(self, r: float) -> float:
        """Blend between the earliest (r = 0) and latest (r = 1) estimate."""
        return r * self.latest + (1 - r) * self.earliest


@dataclass(frozen=True)
class LedgerEntry:
    job:            str
    start:          float
    duration:       float
    finish:         float
    deadline:       float
    delay:          float
    weighted_delay: float
    return_at:      float


Ledgers = Dict[str, Tuple[LedgerEntry, ...]]


@dataclass(frozen=True)
class ScheduleCandidate:
    job_order:      Tuple[str, ...]
    ledgers:        Ledgers = field(compare=False)
    total_delay:    float   = 0.0
    weighted_delay: float   = 0.0
    makespan:       float   = 0.0

    @property
    def assignment(self) -> Dict[str, List[str]]:
        return {v: [e.job for e in entries] for v, entries in self.ledgers.items()}


# (weighted delay, makespan, discovery index, candidate); the index is unique
_Ranked = Tuple[float, float, int, ScheduleCandidate]


@dataclass
class ScheduleResult:
    best:       ScheduleCandidate
    realistic:  ScheduleCandidate   # best order against the probable deadlines
    candidates: List[ScheduleCandidate]
    explored:   int


# ── Ledger arithmetic ─────────────────────────────────────────────────────────

def vehicle_ids(n_vehicles: int) -> List[str]:
    return [f"AGV {i + 1}" for i in range(n_vehicles)]


def _first_back(ledgers: Ledgers) -> str:
    best_id, best_t = None, None
    for vid, entries in ledgers.items():
        t = entries[-1].return_at if entries else 0.0
        if best_t is None or t < best_t:
            best_id, best_t = vid, t
    return best_id


def _assign(
    ledgers: Ledgers,
    job: str,
    estimate: JobEstimate,
    deadline: Deadline,
    r: float,
) -> Ledgers:
    """Copy of *ledgers* with *job* appended to the vehicle that is back first."""
    vid = _first_back(ledgers)
    entries = ledgers[vid]
    start = entries[-1].return_at if entries else 0.0
    duration = estimate.nominal(r)
    finish = start + duration
    delay = finish - deadline.time

    out = dict(ledgers)
    out[vid] = entries + (LedgerEntry(
        job            = job,
        start          = start,
        duration       = duration,
        finish         = finish,
        deadline       = deadline.time,
        delay          = delay,
        weighted_delay = round(delay * deadline.probability, 5),
        return_at      = start + 2 * duration,
    ),)
    return out


def _rank(cand: ScheduleCandidate) -> Tuple[float, float]:
    return cand.weighted_delay, cand.makespan


def _candidate(job_order: Sequence[str], ledgers: Ledgers) -> ScheduleCandidate:
    entries = [e for vehicle in ledgers.values() for e in vehicle]
    return ScheduleCandidate(
        job_order      = tuple(job_order),
        ledgers        = ledgers,
        total_delay    = sum(e.delay for e in entries),
        weighted_delay = round(sum(e.weighted_delay for e in entries), 5),
        makespan       = max((v[-1].return_at for v in ledgers.values() if v), default=0.0),
    )


def _check_inputs(
    estimates: Mapping[str, JobEstimate],
    deadlines_primary: Mapping[str, Deadline],
    deadlines_secondary: Mapping[str, Deadline],
    n_vehicles: int,
    r: float,
    p: int,
    b: int,
) -> None:
    if not deadlines_secondary:
        raise ValueError("no jobs to schedule")
    if n_vehicles < 1:
        raise ValueError("n_vehicles must be at least 1")
    if not 0 <= r <= 1:
        raise ValueError("r must lie in [0, 1]")
    if p < 1 or b < 1:
        raise ValueError("batch size p and beam width b must be at least 1")
    jobs = set(deadlines_secondary)
    if jobs != set(estimates) or jobs != set(deadlines_primary):
        missing = (jobs ^ set(estimates)) | (jobs ^ set(deadlines_primary))
        raise ValueError(f"jobs missing from one of the tables: {sorted(missing)}")


# ── Search ────────────────────────────────────────────────────────────────────

def _select_slots(pools: List[List[_Ranked]], b: int) -> List[ScheduleCandidate]:
    """
    Fill the beam slot by slot: slot ``k`` takes the best child not yet taken
    among the children of the first ``k + 1`` parents.  A narrower beam is
    therefore always a prefix of a wider one.
    """
    taken = [0] * len(pools)
    slots: List[ScheduleCandidate] = []
    for k in range(b):
        best_j = None
        for j in range(min(k + 1, len(pools))):
            if taken[j] < len(pools[j]) and (
                    best_j is None or pools[j][taken[j]][:3] < pools[best_j][taken[best_j]][:3]):
                best_j = j
        if best_j is None:
            break
        slots.append(pools[best_j][taken[best_j]][3])
        taken[best_j] += 1
    return slots


def _search(
    estimates: Mapping[str, JobEstimate],
    deadlines_primary: Mapping[str, Deadline],
    deadlines_secondary: Mapping[str, Deadline],
    n_vehicles: int,
    r: float,
    p: int,
    b: int,
) -> Tuple[List[ScheduleCandidate], int]:
    _check_inputs(estimates, deadlines_primary, deadlines_secondary, n_vehicles, r, p, b)

    order = sorted(deadlines_secondary, key=lambda j: deadlines_secondary[j].time)
    seeds, rest = order[:n_vehicles], order[n_vehicles:]

    ledgers: Ledgers = {vid: () for vid in vehicle_ids(n_vehicles)}
    for job in seeds:
        ledgers = _assign(ledgers, job, estimates[job], deadlines_primary[job], r)
    beam = [_candidate(seeds, ledgers)]

    explored = 0
    for offset in range(0, len(rest), p):
        batch = rest[offset:offset + p]
        pools: List[List[_Ranked]] = []
        for parent in beam:
            # best b children of this parent; with b = 1 only the current best survives
            ranked: List[_Ranked] = []
            for perm in itertools.permutations(batch):
                explored += 1
                led = parent.ledgers
                for job in perm:
                    led = _assign(led, job, estimates[job], deadlines_primary[job], r)
                cand = _candidate(parent.job_order + perm, led)
                entry = (cand.weighted_delay, cand.makespan, explored, cand)
                if len(ranked) == b and entry[:3] > ranked[-1][:3]:
                    continue
                # explored is unique, so candidates themselves are never compared
                bisect.insort(ranked, entry)
                del ranked[b:]
            pools.append(ranked)
        beam = _select_slots(pools, b)
        log.debug("batch %s: %d candidates kept, best weighted delay %.3f",
                  batch, len(beam), min(c.weighted_delay for c in beam))
    return sorted(beam, key=_rank), explored


def robust_schedule(
    estimates: Mapping[str, JobEstimate],
    deadlines_primary: Mapping[str, Deadline],
    deadlines_secondary: Mapping[str, Deadline],
    n_vehicles: int,
    r: float,
    p: int,
    b: int,
) -> List[ScheduleCandidate]:
    """
    The ``b`` surviving job orders, ranked by weighted delay, then makespan;
    ties keep their beam-slot order.
    """
    candidates, _ = _search(
        estimates, deadlines_primary, deadlines_secondary, n_vehicles, r, p, b)
    return candidates


def simulate_order(
    job_order: Iterable[str],
    estimates: Mapping[str, JobEstimate],
    deadlines: Mapping[str, Deadline],
    n_vehicles: int,
    r: float,
) -> ScheduleCandidate:
    """Replay a fixed job order on an empty fleet."""
    job_order = list(job_order)
    ledgers: Ledgers = {vid: () for vid in vehicle_ids(n_vehicles)}
    for job in job_order:
        ledgers = _assign(ledgers, job, estimates[job], deadlines[job], r)
    return _candidate(job_order, ledgers)


def plan_fleet(
    estimates: Mapping[str, JobEstimate],
    deadlines_primary: Mapping[str, Deadline],
    deadlines_secondary: Mapping[str, Deadline],
    n_vehicles: int = 5,
    r: float = 1.0,
    p: int = 7,
    b: int = 20,
) -> ScheduleResult:
    candidates, explored = _search(
        estimates, deadlines_primary, deadlines_secondary, n_vehicles, r, p, b)
    best = candidates[0]
    realistic = simulate_order(best.job_order, estimates, deadlines_secondary, n_vehicles, r)
    log.info("explored %d permutations; weighted delay %.3f, probable delay %.3f, makespan %.2f",
             explored, best.weighted_delay, realistic.total_delay, best.makespan)
    return ScheduleResult(best=best, realistic=realistic, candidates=candidates, explored=explored)


# ── Deadline tables ───────────────────────────────────────────────────────────

DeadlineTable = Tuple[Dict[str, JobEstimate], Dict[str, Deadline], Dict[str, Deadline]]


def deadline_table(rows: Mapping[str, Sequence[Sequence[float]]]) -> DeadlineTable:
    """
    Split ``{job: ((earliest, latest), (deadline, prob), (probable, prob))}``
    into the three scheduler inputs.
    """
    estimates, primary, secondary = {}, {}, {}
    for job, (estimate, first, probable) in rows.items():
        estimates[job] = JobEstimate(float(estimate[0]), float(estimate[1]))
        primary[job]   = Deadline(float(first[0]), float(first[1]))
        secondary[job] = Deadline(float(probable[0]), float(probable[1]))
    return estimates, primary, secondary


def load_deadline_table(path: str) -> DeadlineTable:
    """Read a deadline table written as a JSON object in the same layout."""
    with open(path, encoding="utf-8") as f:
        rows = json.load(f)
    if not isinstance(rows, dict):
        raise ValueError(f"{path}: expected a JSON object keyed by job")
    return deadline_table(rows)


def deadline_table_from_needs(
    needs: Iterable[MaterialNeed],
    delivery: JobEstimate,
) -> DeadlineTable:
    """
    One delivery job per forecast material need, keyed ``job_id/operation``.

    The earliest forecast start is the primary deadline; the latest one (or
    the earliest, when only one position is possible) is the probable one.
    """
    estimates, primary, secondary = {}, {}, {}
    for need in needs:
        key = f"{need.job_id}/{need.operation}"
        estimates[key] = delivery
        primary[key] = Deadline(need.earliest_time, need.earliest_percentage / 100)
        if need.latest_time is not None:
            secondary[key] = Deadline(need.latest_time, (need.latest_percentage or 0.0) / 100)
        else:
            secondary[key] = primary[key]
    return estimates, primary, secondary
