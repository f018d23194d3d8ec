from __future__ import annotations

from fastapi import HTTPException, status


class PlannerError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(status_code=self.status_code, detail=detail)


class InvariantFailed(PlannerError):
    """A command is missing a required field or carries a malformed one."""

    def __init__(self, message: str):
        super().__init__(f"Invariant failed: {message}")


class UnknownAction(PlannerError):
    def __init__(self, action: object):
        super().__init__(f"Unknown action {action}")


class NotFound(PlannerError):
    status_code = status.HTTP_404_NOT_FOUND
