from __future__ import annotations

from fastapi import status


class TurnEngineError(Exception):
    """Caller-visible failure rendered as ``{error, code, requestId, details}``."""

    def __init__(
        self,
        code: str,
        status_code: int,
        message: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.code = code
        self.status_code = int(status_code)
        self.message = message or code
        self.details = details
        super().__init__(f"{code}: {self.message}")

    def to_body(self, request_id: str | None) -> dict:
        body = {"error": self.message, "code": self.code, "requestId": request_id}
        if self.details:
            body["details"] = self.details
        return body


class TurnConflictError(TurnEngineError):
    def __init__(self, expected: int | None, actual: int | None, message: str | None = None) -> None:
        super().__init__(
            "turn_conflict",
            status.HTTP_409_CONFLICT,
            message or "Another turn was committed first. Reload and retry.",
            details={"expected_turn_index": expected, "next_turn_index": actual},
        )
        self.expected = expected
        self.actual = actual


def invalid_request(message: str, details: dict | None = None) -> TurnEngineError:
    return TurnEngineError("invalid_request", status.HTTP_400_BAD_REQUEST, message, details)


def auth_required(message: str = "Authentication required") -> TurnEngineError:
    return TurnEngineError("auth_required", status.HTTP_401_UNAUTHORIZED, message)


def auth_invalid(message: str = "Invalid player token") -> TurnEngineError:
    return TurnEngineError("auth_invalid", status.HTTP_401_UNAUTHORIZED, message)


def campaign_access_denied(campaign_id: object) -> TurnEngineError:
    return TurnEngineError(
        "campaign_access_denied",
        status.HTTP_403_FORBIDDEN,
        "Not a member of this campaign",
        details={"campaign_id": str(campaign_id)},
    )


def board_not_found(campaign_id: object) -> TurnEngineError:
    return TurnEngineError(
        "board_not_found",
        status.HTTP_404_NOT_FOUND,
        "No active board for this campaign",
        details={"campaign_id": str(campaign_id)},
    )


def runtime_not_found(campaign_id: object) -> TurnEngineError:
    return TurnEngineError(
        "runtime_not_found",
        status.HTTP_404_NOT_FOUND,
        "Campaign runtime not found",
        details={"campaign_id": str(campaign_id)},
    )


def turn_engine_not_ready(problems: list[str] | None = None) -> TurnEngineError:
    return TurnEngineError(
        "turn_engine_not_ready",
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Turn engine storage is not ready",
        details={"problems": problems} if problems else None,
    )


def turn_commit_failed(reason: str) -> TurnEngineError:
    return TurnEngineError(
        "turn_commit_failed",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Failed to commit turn",
        details={"reason": reason},
    )


def turn_commit_rejected(reason: str) -> TurnEngineError:
    return TurnEngineError(
        "turn_commit_rejected",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Turn commit was rejected",
        details={"reason": reason},
    )
