class SiteTrackError(Exception):
    """Base exception for the site progress engine.

    ``status_code`` and ``kind`` are used by the API exception handler.
    """

    status_code = 500
    kind = "site_track_error"


class NotFoundError(SiteTrackError):
    """Raised when a referenced site, phase, step, media entry or team member does not exist."""

    status_code = 404
    kind = "not_found"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} '{entity_id}' not found")


class LockedDependencyError(SiteTrackError):
    """Raised when a progress write targets a phase or step whose predecessor is below 100%."""

    status_code = 409
    kind = "locked_dependency"

    def __init__(self, target: str, target_id: str, blocked_by: str):
        self.target = target
        self.target_id = target_id
        self.blocked_by = blocked_by
        super().__init__(f"{target} '{target_id}' is locked until '{blocked_by}' reaches 100%")


class InvalidTargetError(SiteTrackError):
    """Raised when a write targets something that cannot accept it (e.g. a phase that owns steps)."""

    status_code = 422
    kind = "invalid_target"


class PersistenceFailureError(SiteTrackError):
    """Raised when the write to the document store did not complete."""

    status_code = 503
    kind = "persistence_failure"
