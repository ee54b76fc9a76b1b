"""
Caller-facing session API.

Requests arrive as {"operation", "caller_id", "params"}, either directly or
JSON-encoded in an API Gateway "body". Responses are {"statusCode", "body"}
with a JSON body. Engine errors map to their status codes; anything else is
logged and returned as 500.
"""

import json
from typing import Any, Callable, Dict, Optional, Tuple

from src.database.dynamodb_client import SessionQuery
from src.database.exceptions import DynamoDBException
from src.domain.identity import Caller
from src.domain.session import SessionStatus
from src.engine.errors import AuthorizationError, SessionEngineError, ValidationError
from src.engine.lifecycle import SessionLifecycleEngine
from src.utils.clock import parse_timestamp
from src.utils.logger import get_logger

logger = get_logger(__name__)


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {"statusCode": status_code, "body": json.dumps(body, default=str)}


def build_query(params: Dict[str, Any]) -> SessionQuery:
    """Translate listing filters (member, trainer, programme, status, date range, paging)."""
    errors: Dict[str, str] = {}

    status = params.get("status")
    if status:
        try:
            status = SessionStatus(status)
        except ValueError:
            errors["status"] = "must be one of: " + ", ".join(s.value for s in SessionStatus)

    bounds = {}
    for name in ("start_date", "end_date"):
        try:
            bounds[name] = parse_timestamp(params.get(name))
        except ValueError:
            errors[name] = f"{name} must be an ISO-8601 timestamp"

    paging = {}
    for name, default in (("page", 1), ("limit", 20)):
        try:
            paging[name] = int(params.get(name, default))
        except (TypeError, ValueError):
            errors[name] = f"{name} must be an integer"

    if errors:
        raise ValidationError("Invalid listing filters", errors)

    return SessionQuery(
        member_id=params.get("member_id") or None,
        trainer_id=params.get("trainer_id") or None,
        programme_id=params.get("programme_id") or None,
        status=status or None,
        start_from=bounds.get("start_date"),
        start_to=bounds.get("end_date"),
        page=paging["page"],
        limit=paging["limit"],
    )


class SessionApi:
    """Routes named operations to the lifecycle engine."""

    def __init__(self, engine: SessionLifecycleEngine):
        self.engine = engine
        self._routes: Dict[str, Callable[[Caller, Dict[str, Any]], Tuple[int, Dict[str, Any]]]] = {
            "create_session": self._create_session,
            "get_session": self._get_session,
            "list_sessions": self._list_sessions,
            "list_trainer_sessions": self._list_trainer_sessions,
            "list_member_sessions": self._list_member_sessions,
            "mark_attendance": self._mark_attendance,
            "complete_session": self._complete_session,
            "cancel_session": self._cancel_session,
            "request_reschedule": self._request_reschedule,
            "request_cancel": self._request_cancel,
            "session_stats": self._session_stats,
        }

    def dispatch(self, event: Dict[str, Any]) -> Dict[str, Any]:
        try:
            request = self._parse_event(event)
            operation = request.get("operation")
            handler = self._routes.get(operation or "")
            if handler is None:
                raise ValidationError(
                    f"Unknown operation: {operation}",
                    {"operation": "must be one of: " + ", ".join(sorted(self._routes))},
                )

            caller = self._resolve_caller(request.get("caller_id"))
            params = request.get("params") or {}
            if not isinstance(params, dict):
                raise ValidationError("params must be an object", {"params": "must be an object"})

            status_code, body = handler(caller, params)
            return _response(status_code, body)

        except SessionEngineError as e:
            logger.info(
                "Request rejected",
                operation="api_dispatch",
                context={"error_type": type(e).__name__, "status_code": e.status_code},
            )
            return _response(e.status_code, e.to_dict())
        except DynamoDBException as e:
            logger.error(
                "Storage failure",
                operation="api_dispatch",
                context={"error_type": type(e).__name__},
                error=str(e),
            )
            return _response(500, {"error": "StorageError", "message": "Storage unavailable"})
        except Exception as e:
            logger.error(
                "Unexpected error",
                operation="api_dispatch",
                context={"error_type": type(e).__name__},
                error=str(e),
            )
            return _response(500, {"error": "InternalError", "message": "Unexpected error"})

    # ------------------------------------------------------------------ #
    # Request parsing
    # ------------------------------------------------------------------ #

    @staticmethod
    def _parse_event(event: Dict[str, Any]) -> Dict[str, Any]:
        body = event.get("body")
        if isinstance(body, str):
            try:
                parsed = json.loads(body)
            except json.JSONDecodeError:
                raise ValidationError("Request body is not valid JSON", {"body": "invalid JSON"})
            if not isinstance(parsed, dict):
                raise ValidationError("Request body must be an object", {"body": "must be an object"})
            return parsed
        return event

    def _resolve_caller(self, caller_id: Optional[str]) -> Caller:
        if not caller_id:
            raise AuthorizationError("caller_id is required")
        caller = self.engine.users.resolve_caller(caller_id)
        if caller is None:
            raise AuthorizationError(f"Unknown caller {caller_id}")
        return caller

    @staticmethod
    def _version(params: Dict[str, Any]) -> Any:
        # Passed through as sent; the engine rejects non-integers
        return params.get("expected_version")

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    def _create_session(self, caller: Caller, params: Dict[str, Any]):
        session = self.engine.create_session(
            caller,
            member_id=params.get("member_id"),
            start_time=params.get("start_time"),
            trainer_id=params.get("trainer_id"),
            programme_id=params.get("programme_id"),
            remarks=params.get("remarks"),
        )
        return 201, {"session": session.to_dict()}

    def _get_session(self, caller: Caller, params: Dict[str, Any]):
        session = self.engine.get_session(caller, params.get("session_id"))
        return 200, {"session": session.to_dict()}

    def _list_sessions(self, caller: Caller, params: Dict[str, Any]):
        page = self.engine.list_sessions(caller, build_query(params))
        return 200, page.to_dict()

    def _list_trainer_sessions(self, caller: Caller, params: Dict[str, Any]):
        trainer_id = params.get("trainer_id")
        if not trainer_id:
            raise ValidationError("trainer_id is required", {"trainer_id": "required"})
        page = self.engine.list_trainer_sessions(caller, trainer_id, build_query(params))
        return 200, page.to_dict()

    def _list_member_sessions(self, caller: Caller, params: Dict[str, Any]):
        member_id = params.get("member_id")
        if not member_id:
            raise ValidationError("member_id is required", {"member_id": "required"})
        page = self.engine.list_member_sessions(caller, member_id, build_query(params))
        return 200, page.to_dict()

    def _mark_attendance(self, caller: Caller, params: Dict[str, Any]):
        session = self.engine.mark_attendance(
            caller,
            params.get("session_id"),
            params.get("outcome"),
            expected_version=self._version(params),
        )
        return 200, {"session": session.to_dict()}

    def _complete_session(self, caller: Caller, params: Dict[str, Any]):
        result = self.engine.complete_session(
            caller,
            params.get("session_id"),
            rating=params.get("rating"),
            remarks=params.get("remarks"),
            exercises=params.get("exercises_completed"),
            trainer_notes=params.get("trainer_notes"),
            recommendations=params.get("recommendations"),
            expected_version=self._version(params),
        )
        return 200, result.to_dict()

    def _cancel_session(self, caller: Caller, params: Dict[str, Any]):
        session = self.engine.cancel_session(
            caller,
            params.get("session_id"),
            reason=params.get("reason"),
            expected_version=self._version(params),
        )
        return 200, {"session": session.to_dict()}

    def _request_reschedule(self, caller: Caller, params: Dict[str, Any]):
        session = self.engine.request_reschedule(
            caller,
            params.get("session_id"),
            reason=params.get("reason"),
            proposed_start=params.get("proposed_start"),
        )
        return 200, {"session": session.to_dict(), "message": "Reschedule request sent to staff"}

    def _request_cancel(self, caller: Caller, params: Dict[str, Any]):
        session = self.engine.request_cancel(
            caller, params.get("session_id"), reason=params.get("reason")
        )
        return 200, {"session": session.to_dict(), "message": "Cancellation request sent to staff"}

    def _session_stats(self, caller: Caller, params: Dict[str, Any]):
        stats = self.engine.statistics(
            caller,
            trainer_id=params.get("trainer_id"),
            start_from=params.get("start_date"),
            start_to=params.get("end_date"),
        )
        return 200, stats.to_dict()


def api_handler(event, context):
    """Lambda entry point for the session API."""
    from src.main import get_services

    try:
        engine = get_services().engine
    except Exception as e:
        logger.error("Service wiring failed", operation="api_handler", error=str(e))
        return _response(500, {"error": "InternalError", "message": "Service unavailable"})
    return SessionApi(engine).dispatch(event)
