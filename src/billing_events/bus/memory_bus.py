"""In-memory event bus for testing and local replay.

No external dependencies. Entries are accepted synchronously and kept in
an inspectable history. An optional ``rejector`` lets tests simulate
per-entry failures the way a real bus reports them: in the result, with
a non-zero failed count, never as an exception.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from billing_events.core.ids import new_id
from billing_events.core.models import BusEntry, EntryResult, PublishResult

logger = logging.getLogger(__name__)

# Returns an error code to reject the entry, ``None`` to accept it.
Rejector = Callable[[BusEntry], "str | None"]


class MemoryEventBus:
    """In-memory bus. Safe within a single asyncio event loop."""

    def __init__(
        self,
        max_entries_per_call: int = 10,
        rejector: Rejector | None = None,
    ) -> None:
        self._max_entries = max_entries_per_call
        self._rejector = rejector
        self._history: list[BusEntry] = []
        self._calls: list[list[BusEntry]] = []

    @property
    def max_entries_per_call(self) -> int:
        return self._max_entries

    async def publish(self, entries: list[BusEntry]) -> PublishResult:
        if len(entries) > self._max_entries:
            raise ValueError(
                f"publish accepts at most {self._max_entries} entries, "
                f"got {len(entries)}"
            )
        self._calls.append(list(entries))

        results: list[EntryResult] = []
        failed = 0
        for entry in entries:
            error_code = self._rejector(entry) if self._rejector else None
            if error_code:
                failed += 1
                results.append(EntryResult(
                    error_code=error_code,
                    error_message=f"Rejected {entry.detail_type}",
                ))
                continue
            self._history.append(entry)
            results.append(EntryResult(event_id=new_id()))

        return PublishResult(failed_entry_count=failed, entries=results)

    # ------------------------------------------------------------------
    # Testing helpers
    # ------------------------------------------------------------------

    def get_history(self, detail_type: str | None = None) -> list[BusEntry]:
        """Accepted entries, optionally filtered by detail type."""
        if detail_type is None:
            return list(self._history)
        return [e for e in self._history if e.detail_type == detail_type]

    @property
    def calls(self) -> list[list[BusEntry]]:
        """Every publish call, including rejected entries."""
        return list(self._calls)

    def clear_history(self) -> None:
        self._history.clear()
        self._calls.clear()
