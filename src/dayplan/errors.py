"""Error taxonomy shared by the scheduling engine and the pipeline."""


class PlannerError(Exception):
    """Base exception for all planner errors."""

    pass


class ValidationError(PlannerError):
    """Malformed duration, name or window. The attempt is rejected, never retried."""

    pass


class ConstraintError(PlannerError):
    """No feasible slot before the end of the day."""

    pass


class TransientIOError(PlannerError):
    """A collaborator call failed; the item stays unprocessed so it can be retried."""

    pass


class DuplicateDetected(PlannerError):
    """The item was already seen. Benign, logged at low severity."""

    def __init__(self, item_id: str, source: str = "unknown"):
        self.item_id = item_id
        self.source = source
        super().__init__(f"Item {item_id} already seen (source: {source})")
