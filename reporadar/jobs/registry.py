"""Processor registry."""

from typing import TYPE_CHECKING, Union

from reporadar.jobs.errors import UnknownJobKindError
from reporadar.jobs.types import JobKind

if TYPE_CHECKING:
    from reporadar.jobs.processors.base import Processor

KindKey = Union[JobKind, str]


def _key(kind: KindKey) -> str:
    return kind.value if isinstance(kind, JobKind) else kind


class ProcessorRegistry:
    """Registry mapping job kinds to their processors."""

    def __init__(self):
        self._processors: dict[str, "Processor"] = {}

    def register(self, kind: KindKey, processor: "Processor") -> None:
        """Register a processor for a job kind, replacing any previous one."""
        self._processors[_key(kind)] = processor

    def get(self, kind: KindKey) -> "Processor":
        """Get the processor for a kind. Raises UnknownJobKindError if not found."""
        key = _key(kind)
        if key not in self._processors:
            raise UnknownJobKindError(key)
        return self._processors[key]

    def is_registered(self, kind: KindKey) -> bool:
        return _key(kind) in self._processors

    @property
    def kinds(self) -> list[str]:
        return sorted(self._processors)
