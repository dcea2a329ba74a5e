"""
Domain exceptions.

Validation problems are raised as plain ValueError (mapped to 400 by the
app); the classes below cover lookups and vendor failures.
"""


class VetDeskError(Exception):
    """Base class for application errors."""


class NotFoundError(VetDeskError):
    """A required row does not exist."""


class ExternalServiceError(VetDeskError):
    """A vendor API (LLM, Vapi, email, Slack) call failed."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")
