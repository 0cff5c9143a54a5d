"""Source adapter contract shared by the metric collectors."""

from typing import List, Protocol, runtime_checkable

from labpulse.schemas.metrics import MetricFamily, Snapshot


@runtime_checkable
class SourceAdapter(Protocol):
    """A metric source the collector can fan out to.

    ``collect()`` returns fully populated snapshots (possibly none) or raises;
    it never returns partially populated data. Expected unavailability is
    expressed in the return value, not as an exception.

    Adapters that bound their own calls may also expose
    ``max_collect_seconds``, their worst-case collect() duration; the
    collector never cuts such an adapter off earlier than that.
    """

    family: MetricFamily

    async def is_available(self) -> bool:
        ...

    async def collect(self) -> List[Snapshot]:
        ...
