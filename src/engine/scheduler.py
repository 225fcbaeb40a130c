from __future__ import annotations

from src.core.contracts.plan import ValidatedPlan
from src.engine.graph import dependency_graph, layers


class DependencyScheduler:
    """Split a validated plan into execution batches.

    A step lands in batch k once all of its dependencies sit in batches < k.
    Steps inside a batch have no dependency on each other and may run
    concurrently; batches run strictly one after another. Within a batch ids
    are sorted ascending, which is also the order used when running
    sequentially.
    """

    def order(self, validated: ValidatedPlan) -> list[list[str]]:
        if not isinstance(validated, ValidatedPlan):
            raise TypeError("scheduler only accepts a ValidatedPlan")
        return layers(dependency_graph(validated.plan))
