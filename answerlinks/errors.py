"""Error taxonomy for link issuing, the answer portal and registry calls."""
from __future__ import annotations

from typing import Optional


class AnswerLinkError(Exception):
    """Base class for every error raised by the answer link services."""

    message = "An error occurred while processing the answer link."

    def __init__(self, message: Optional[str] = None):
        if message:
            self.message = message
        super().__init__(self.message)


class AnswerValidationError(AnswerLinkError):
    """One or more required questions are incomplete. Never reaches the network."""

    message = "Please complete all required questions."

    def __init__(self, missing_question_ids: list[str], message: Optional[str] = None):
        self.missing_question_ids = list(missing_question_ids)
        super().__init__(message)


class NetworkError(AnswerLinkError):
    """Offline, DNS or timeout failures talking to the registry."""

    message = "Unable to reach the server. Check your connection and try again."


class AuthError(AnswerLinkError):
    """The registry rejected the admin bearer token (401)."""

    message = "Your session has expired. Please sign in again."


class RegistryError(AnswerLinkError):
    """A 4xx/5xx response from a registry create/extend/delete/list call."""

    message = "The link registry rejected the request."

    def __init__(self, status_code: int, message: Optional[str] = None):
        self.status_code = status_code
        super().__init__(message)


class LinkNotFound(AnswerLinkError):
    """The link id cannot be resolved (404). Fatal for the page view."""

    message = "This link does not exist."


class LinkExpiredOrConsumed(AnswerLinkError):
    """The link is no longer active and this browser has no completion marker."""

    message = "This link has expired or is no longer valid."


class LinkAlreadyConsumed(AnswerLinkError):
    """The link was already used for a submission and cannot be extended."""

    message = "This link has already been used to submit answers."


class NoSubjectSelected(AnswerLinkError):
    message = "Select a survey or assessment first."


class InvalidTransition(AnswerLinkError):
    """An answer portal operation was attempted from the wrong state."""

    def __init__(self, state: str, operation: str):
        self.state = state
        self.operation = operation
        super().__init__(f"Cannot {operation} while the portal is {state}.")


class TimeUp(AnswerLinkError):
    """The time limit of a timed subject has passed; answers are frozen."""

    message = "Time is up! You can no longer change or submit your answers."
