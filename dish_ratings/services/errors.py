"""Error taxonomy for the review pipeline.

ValidationError and ConflictError are user-correctable and never retried.
TransientStoreError means the Primary Store or Cache could not be reached;
the write path surfaces it, the read and aggregation paths log it and degrade.
EventPublishError is raised by publishers and swallowed by ReviewWriter.
"""


class ReviewError(Exception):
    """Base class for every error raised by the review pipeline."""


class ValidationError(ReviewError):
    """The submission can never succeed as sent."""


class DishNotInOrderError(ValidationError):
    def __init__(self, message: str = "dish was not ordered for this check") -> None:
        super().__init__(message)


class InvalidRatingError(ValidationError):
    def __init__(self, rating: int) -> None:
        super().__init__(f"rating must be between 1 and 5, got {rating}")
        self.rating = rating


class ConflictError(ReviewError):
    """The submission collides with existing state."""


class DuplicateReviewError(ConflictError):
    def __init__(
        self, message: str = "review already exists for this dish and check"
    ) -> None:
        super().__init__(message)


class TransientStoreError(ReviewError):
    """Primary Store or Cache Mirror unreachable."""


class EventPublishError(ReviewError):
    """The aggregation event could not be handed to the event bus."""
