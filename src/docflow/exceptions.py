"""Custom exceptions for docflow.

Every operator-visible failure carries a machine-readable ``kind`` and a
human-readable message.
"""


class DocflowError(Exception):
    """Base error with a machine-readable kind."""

    kind = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class NotFoundError(DocflowError):
    """Raised when a referenced record does not exist."""

    kind = "not_found"

    def __init__(self, entity: str, identifier: object):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class NotEligibleError(DocflowError):
    """Raised when proposals cannot be added to a changeset batch."""

    kind = "not_eligible"

    def __init__(self, proposal_ids: list[int], reason: str):
        self.proposal_ids = proposal_ids
        self.reason = reason
        ids = ", ".join(str(i) for i in proposal_ids)
        super().__init__(f"Proposals not eligible for batching ({reason}): {ids}")


class ConflictError(DocflowError):
    """Raised when an operation conflicts with the current record state."""

    kind = "conflict"


class InvalidTransitionError(DocflowError):
    """Raised for a proposal status change the state machine does not allow."""

    kind = "invalid_transition"

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot transition proposal from {current} to {requested}")


class AlreadyProcessingError(DocflowError):
    """Raised when a batch run is triggered while another run holds the lock."""

    kind = "already_processing"

    def __init__(self, tenant: str):
        self.tenant = tenant
        super().__init__(f"Batch processing already running for {tenant}")


class LLMResponseError(DocflowError):
    """Raised when a model response cannot be parsed into the expected shape."""

    kind = "llm_response"


class GitHostingError(DocflowError):
    """Raised when the git hosting API rejects a request."""

    kind = "git_hosting"

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class ConfigurationError(DocflowError):
    """Raised when a pipeline stage is misconfigured or missing a capability."""

    kind = "configuration"
