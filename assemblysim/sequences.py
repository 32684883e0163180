"""
Sequence enumeration — every legal completion order of a job.

Sequences are expanded on an explicit work stack of ``(done mask, index tuple)``
pairs over the product's operation array.  The operations already completed
(plus an optional in-flight one) are folded into the starting mask, so the
known prefix is never expanded again.  Emission order is depth-first with
children in matrix-row order; the forecaster relies on it for tie-breaking.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

from .models import Operation, OperationCount, Product

if TYPE_CHECKING:
    from .job import Job

IndexSequence = Tuple[int, ...]


def enumerate_index_sequences(
    product: Product,
    completed: Sequence[Operation] = (),
    planned: Optional[Operation] = None,
) -> List[IndexSequence]:
    """All remaining completion orders as tuples of operation indices."""
    start = product.mask_of(completed)
    if planned is not None:
        start |= 1 << product.index_of(planned)

    results: List[IndexSequence] = []
    stack: List[Tuple[int, IndexSequence]] = [(start, ())]
    while stack:
        done, seq = stack.pop()
        eligible = product.eligible_indices(done)
        if not eligible:
            results.append(seq)
            continue
        # reversed, so the first eligible operation is expanded first
        for i in reversed(eligible):
            stack.append((done | (1 << i), seq + (i,)))
    return results


def enumerate_sequences(
    product: Product,
    completed: Sequence[Operation] = (),
    planned: Optional[Operation] = None,
) -> List[Tuple[Operation, ...]]:
    """
    Every operation ordering reachable from *completed* (and *planned*).

    A job with nothing left to do yields a single empty sequence.
    """
    ops = product.operations
    return [
        tuple(ops[i] for i in seq)
        for seq in enumerate_index_sequences(product, completed, planned)
    ]


def position_statistics(
    sequences: Sequence[Sequence[Operation]],
    finishing_time: Optional[float] = None,
) -> Dict[int, Dict[str, OperationCount]]:
    """
    Occurrence count and share of each operation per sequence position.

    Position 0 entries also carry *finishing_time*, the absolute time the
    current operation is expected to be done.
    """
    total = len(sequences)
    max_len = max((len(s) for s in sequences), default=0)
    stats: Dict[int, Dict[str, OperationCount]] = {i: {} for i in range(max_len)}

    for seq in sequences:
        for i, op in enumerate(seq):
            entry = stats[i].setdefault(op.name, OperationCount())
            entry.count += 1
            entry.needs_material = op.material_required
            if i == 0:
                entry.finishing_time = finishing_time

    for counts in stats.values():
        for entry in counts.values():
            entry.percentage = entry.count / total * 100
    return stats


def regenerate_sequences(job: "Job", include_planned: bool = True) -> List[Tuple[Operation, ...]]:
    """Rebuild ``job.sequences`` and ``job.position_stats`` from its current state."""
    planned = job.planned_operation if include_planned else None
    job.sequences = enumerate_sequences(job.product, job.completed_operations, planned)

    finishing_time = 0.0
    if planned is not None:
        finishing_time = planned.total_time + job.metrics.last_time
    job.position_stats = position_statistics(job.sequences, finishing_time)
    return job.sequences
