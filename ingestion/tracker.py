"""
Run-scoped set of external ids confirmed admissible.

One tracker is created per orchestrator run and handed to the cleanup
pass; it is never stored on a module or a long-lived object.
"""

from typing import Iterable, Iterator, Set


class ValidSetTracker:
    """External ids the current run has seen and judged publishable"""

    def __init__(self, ids: Iterable[str] = ()):
        self._ids: Set[str] = set()
        for external_id in ids:
            self.add(external_id)

    def add(self, external_id: str):
        if external_id:
            self._ids.add(str(external_id))

    def __contains__(self, external_id: object) -> bool:
        return str(external_id) in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    @property
    def is_empty(self) -> bool:
        return not self._ids

    def snapshot(self) -> frozenset:
        """Immutable copy for queries that must not see later additions"""
        return frozenset(self._ids)
