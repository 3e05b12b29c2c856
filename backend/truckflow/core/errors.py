"""Domain exceptions raised by services and mapped to HTTP codes by routers."""


class NotFoundError(KeyError):
    """Entity lookup miss."""

    entity = "Entity"

    def __init__(self, entity_id: int):
        self.entity_id = entity_id
        super().__init__(entity_id)

    def __str__(self) -> str:
        return f"{self.entity} {self.entity_id} not found"


class LoadNotFoundError(NotFoundError):
    entity = "Load"


class DriverNotFoundError(NotFoundError):
    entity = "Driver"


class NegotiationNotFoundError(NotFoundError):
    entity = "Negotiation"


class RecommendationNotFoundError(NotFoundError):
    entity = "Recommendation"


class AlertNotFoundError(NotFoundError):
    entity = "Alert"


class InvalidStatusTransition(ValueError):
    """Requested load status change is not allowed from the current status."""


class NegotiationClosedError(ValueError):
    """Negotiation already reached a terminal status."""


class DuplicateLoadError(ValueError):
    """A load with the same external id already exists."""
