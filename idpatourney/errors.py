"""Custom exception classes for the application."""


class AppError(Exception):
    """Base application error class."""

    def __init__(self, message, status_code=400):
        """Initialize the error."""
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def to_dict(self):
        """Serialize the error for a JSON response."""
        return {"error": self.message, "type": type(self).__name__}


class ValidationError(AppError):
    """Raised when user input fails validation."""

    def __init__(self, message="Validation failed."):
        """Initialize the error."""
        super().__init__(message, 400)


class InvalidScoreInput(ValidationError):
    """Raised when score strings or penalties are out of range."""

    def __init__(self, errors):
        """Initialize the error with every problem found."""
        self.errors = list(errors)
        super().__init__("Invalid score input: " + "; ".join(self.errors))

    def to_dict(self):
        """Serialize the error for a JSON response."""
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class DuplicateResourceError(AppError):
    """Raised when trying to create a resource that already exists."""

    def __init__(self, message="Resource already exists."):
        """Initialize the error."""
        super().__init__(message, 409)


class NotFoundError(AppError):
    """Raised when a resource is not found."""

    def __init__(self, message="Resource not found."):
        """Initialize the error."""
        super().__init__(message, 404)


class BusinessRuleError(AppError):
    """Raised when a request breaks a tournament rule. Never retried."""

    def __init__(self, message, status_code=409):
        """Initialize the error."""
        super().__init__(message, status_code)


class TournamentClosed(BusinessRuleError):
    """Registration is not open for the tournament."""

    def __init__(self, message="Tournament is not open for registration."):
        """Initialize the error."""
        super().__init__(message)


class TournamentLocked(BusinessRuleError):
    """The tournament is active or completed."""

    def __init__(
        self,
        message="Cannot change registrations for an active or completed tournament.",
    ):
        """Initialize the error."""
        super().__init__(message)


class DivisionNotAllowed(BusinessRuleError):
    """The division is not offered by the tournament."""

    def __init__(self, division):
        """Initialize the error."""
        super().__init__(f"Division {division} is not allowed in this tournament.", 400)


class InvalidCategory(BusinessRuleError):
    """A requested custom category does not exist."""

    def __init__(self, category_ids):
        """Initialize the error."""
        super().__init__(
            f"Invalid custom categories: {', '.join(sorted(category_ids))}", 400
        )


class AlreadyRegistered(DuplicateResourceError, BusinessRuleError):
    """The shooter already holds an active registration."""

    def __init__(self, message="Already registered for this tournament."):
        """Initialize the error."""
        DuplicateResourceError.__init__(self, message)


class SquadClosed(BusinessRuleError):
    """The squad is closed for registration."""

    def __init__(self, message="Squad is closed for registration."):
        """Initialize the error."""
        super().__init__(message)


class TargetClosed(SquadClosed):
    """The transfer target squad is closed."""

    def __init__(self):
        """Initialize the error."""
        super().__init__("Target squad is closed.")


class TargetFull(BusinessRuleError):
    """The transfer target squad has no spare capacity."""

    def __init__(self):
        """Initialize the error."""
        super().__init__("Target squad is full.")


class CapacityBelowCurrent(BusinessRuleError):
    """A capacity change would drop below the current shooter count."""

    def __init__(self, requested, current):
        """Initialize the error."""
        super().__init__(
            f"Cannot reduce max shooters to {requested}; "
            f"{current} shooters are registered."
        )


class NotOwner(BusinessRuleError):
    """The requester does not own the registration."""

    def __init__(self, message="Not authorized to change this registration."):
        """Initialize the error."""
        super().__init__(message, 403)


class InvalidStatusTransition(BusinessRuleError):
    """A registration or tournament cannot move to the requested status."""


class QueueItemFailed(BusinessRuleError):
    """The queue item is frozen in the failed state."""

    def __init__(self, queue_id, error=None):
        """Initialize the error."""
        message = f"Queue item {queue_id} has failed permanently"
        if error:
            message = f"{message}: {error}"
        super().__init__(message)
        self.queue_id = queue_id


class ScoreConflictError(AppError):
    """A local score diverged from the server version."""

    def __init__(self, conflict):
        """Initialize the error with the conflicting versions."""
        super().__init__(
            f"Score {conflict.score_id} was modified on the server.", 409
        )
        self.conflict = conflict

    def to_dict(self):
        """Serialize the error for a JSON response."""
        data = super().to_dict()
        data["conflict"] = self.conflict.to_dict()
        return data


class QueueItemBusy(BusinessRuleError):
    """Another processor holds the queue item."""

    def __init__(self, queue_id):
        """Initialize the error."""
        super().__init__(f"Queue item {queue_id} is already being processed")
        self.queue_id = queue_id
