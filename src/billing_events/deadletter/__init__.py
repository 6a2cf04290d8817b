"""Dead-letter redrive and quarantine."""

from billing_events.deadletter.conductor import BatchSummary, DeadLetterConductor

__all__ = ["BatchSummary", "DeadLetterConductor"]
