"""
Error codes and result helpers for the review engine.

Expected business outcomes (a duplicate review, a self-review, a paper that
fails the safety scan) are returned as plain result dicts, never raised:

    {"success": False, "error_code": "duplicate", "errors": ["..."]}

Exceptions are only used for faults the caller cannot fix by changing its
input: the store failing to persist, or code asking the state machine for a
transition that does not exist.
"""

VALIDATION = "validation"
FORBIDDEN = "forbidden"
DUPLICATE = "duplicate"
NOT_FOUND = "not_found"
WRONG_STATE = "wrong_state"
SAFETY_BLOCK = "safety_block"
INTERNAL = "internal"

ERROR_CODES = (
    VALIDATION,
    FORBIDDEN,
    DUPLICATE,
    NOT_FOUND,
    WRONG_STATE,
    SAFETY_BLOCK,
    INTERNAL,
)

GENERIC_INTERNAL_MESSAGE = "The request could not be completed. Please retry later."


class StoreError(Exception):
    """The submission store could not read or persist its state."""


class DuplicateRecordError(Exception):
    """A record violating a uniqueness rule (review per paper version, pseudonym)."""


class IllegalTransitionError(Exception):
    """A paper status transition that the state machine does not allow."""

    def __init__(self, status: str, event: str):
        super().__init__(f"Cannot apply '{event}' to a paper in '{status}' status")
        self.status = status
        self.event = event


def error_result(error_code: str, errors, **extra) -> dict:
    """Build a failed result dict. ``errors`` may be a single message or a list."""
    if isinstance(errors, str):
        errors = [errors]
    result = {
        "success": False,
        "error_code": error_code,
        "errors": list(errors),
    }
    result.update(extra)
    return result


def internal_error_result() -> dict:
    return error_result(INTERNAL, GENERIC_INTERNAL_MESSAGE)
