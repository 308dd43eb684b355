"""
Request Tracking Service
Stores client-reported request flows and aggregates them for the admin dashboard
"""
from typing import Optional, Dict, Any, List
from datetime import datetime, timedelta
import logging

from sqlalchemy import func, case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.models.tracking import RequestLog
from ..exceptions import InfinitePagesError, NotFoundError, ConflictError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = [
    "requestId",
    "sessionId",
    "frontendAction",
    "frontendComponent",
    "apiEndpoint",
    "httpMethod",
    "responseStatus",
    "successFlag",
    "integrationPoint",
]

# Client field name -> column name
FIELD_MAP = {
    "requestId": "request_id",
    "sessionId": "session_id",
    "frontendAction": "frontend_action",
    "frontendComponent": "frontend_component",
    "frontendPage": "frontend_page",
    "apiEndpoint": "api_endpoint",
    "expectedEndpoint": "expected_endpoint",
    "httpMethod": "http_method",
    "requestBodySize": "request_body_size",
    "responseStatus": "response_status",
    "responseBodySize": "response_body_size",
    "responseTimeMs": "response_time_ms",
    "successFlag": "success_flag",
    "errorMessage": "error_message",
    "errorCategory": "error_category",
    "integrationPoint": "integration_point",
    "expectedIntegration": "expected_integration",
    "integrationSuccess": "integration_success",
    "userTier": "user_tier",
    "deviceInfo": "device_info",
    "totalTimeMs": "total_time_ms",
    "customData": "custom_data",
}

UPDATABLE_FIELDS = {"integrationSuccess", "customData", "totalTimeMs", "errorMessage", "errorCategory"}

INTEGER_FIELDS = {"requestBodySize", "responseStatus", "responseBodySize", "responseTimeMs", "totalTimeMs"}
BOOLEAN_FIELDS = {"successFlag", "integrationSuccess"}

TRUE_VALUES = {"true", "1"}
FALSE_VALUES = {"false", "0"}

STATS_WINDOW = timedelta(hours=24)
TOP_ENDPOINTS_LIMIT = 10
RECENT_ERRORS_LIMIT = 5


def _invalid_field(field: str, value: Any, expected: str) -> InfinitePagesError:
    return InfinitePagesError(
        f"Field {field} must be {expected}",
        code="VALIDATION_ERROR",
        status_code=400,
        details={"field": field, "value": str(value)[:100]},
    )


def coerce_field(field: str, value: Any) -> Any:
    """Convert a client value to the column type; None passes through"""
    if value is None:
        return None
    if field in INTEGER_FIELDS:
        if isinstance(value, bool):
            raise _invalid_field(field, value, "an integer")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise _invalid_field(field, value, "an integer")
    if field in BOOLEAN_FIELDS:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str) and value.strip().lower() in TRUE_VALUES | FALSE_VALUES:
            return value.strip().lower() in TRUE_VALUES
        raise _invalid_field(field, value, "a boolean")
    return value


class RequestTrackingService:
    def __init__(self, db: Session):
        self.db = db

    def log_request(self, data: Dict[str, Any], user_id: Optional[int] = None) -> RequestLog:
        """
        Store one client-reported request

        Raises:
            InfinitePagesError: required fields missing (400, MISSING_FIELDS)
            InfinitePagesError: a numeric or boolean field has the wrong type (400, VALIDATION_ERROR)
            ConflictError: request_id already logged
        """
        missing = [f for f in REQUIRED_FIELDS if data.get(f) is None or data.get(f) == ""]
        if missing:
            raise InfinitePagesError(
                "Missing required fields",
                code="MISSING_FIELDS",
                status_code=400,
                details={"missing_fields": missing},
            )

        values = {
            column: coerce_field(field, data[field]) for field, column in FIELD_MAP.items() if field in data
        }
        values["http_method"] = str(values["http_method"]).upper()

        if self.db.query(RequestLog.id).filter(RequestLog.request_id == values["request_id"]).first():
            raise ConflictError(f"Request {values['request_id']} already logged")

        entry = RequestLog(user_id=user_id, **values)
        self.db.add(entry)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(f"Request {values['request_id']} already logged")
        self.db.refresh(entry)
        return entry

    def update_request(self, request_id: str, updates: Dict[str, Any]) -> RequestLog:
        """Apply late-arriving fields such as integrationSuccess"""
        entry = self.db.query(RequestLog).filter(RequestLog.request_id == request_id).first()
        if not entry:
            raise NotFoundError(f"Request {request_id} not found")

        for field, value in (updates or {}).items():
            if field not in UPDATABLE_FIELDS:
                continue
            column = FIELD_MAP[field]
            value = coerce_field(field, value)
            if field == "customData" and isinstance(entry.custom_data, dict) and isinstance(value, dict):
                value = {**entry.custom_data, **value}
            setattr(entry, column, value)

        self.db.commit()
        self.db.refresh(entry)
        return entry

    def _since(self) -> datetime:
        return datetime.utcnow() - STATS_WINDOW

    def stats(self) -> Dict[str, Any]:
        """Dashboard aggregates over the last 24 hours"""
        since = self._since()
        window = self.db.query(RequestLog).filter(RequestLog.created_at >= since)

        total = window.count()
        successes = window.filter(RequestLog.success_flag == True).count()  # noqa: E712
        avg_time = self.db.query(func.avg(RequestLog.response_time_ms)).filter(
            RequestLog.created_at >= since
        ).scalar()

        top_endpoints = self.db.query(
            RequestLog.api_endpoint,
            func.count(RequestLog.id).label("count"),
            func.avg(RequestLog.response_time_ms),
        ).filter(RequestLog.created_at >= since).group_by(
            RequestLog.api_endpoint
        ).order_by(func.count(RequestLog.id).desc()).limit(TOP_ENDPOINTS_LIMIT).all()

        by_category = self.db.query(
            RequestLog.error_category,
            func.count(RequestLog.id),
        ).filter(
            RequestLog.created_at >= since,
            RequestLog.success_flag == False,  # noqa: E712
        ).group_by(RequestLog.error_category).all()

        return {
            "window_hours": int(STATS_WINDOW.total_seconds() // 3600),
            "total_requests": total,
            "success_rate": round(successes / total * 100, 2) if total else 100.0,
            "avg_response_time_ms": round(float(avg_time), 2) if avg_time is not None else None,
            "error_count": total - successes,
            "top_endpoints": [
                {
                    "endpoint": endpoint,
                    "count": count,
                    "avg_response_time_ms": round(float(avg), 2) if avg is not None else None,
                }
                for endpoint, count, avg in top_endpoints
            ],
            "errors_by_category": {
                (category or "uncategorized"): count for category, count in by_category
            },
        }

    def recent(self, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        entries = self.db.query(RequestLog).order_by(
            RequestLog.created_at.desc(), RequestLog.id.desc()
        ).offset(offset).limit(limit).all()
        return [self.serialize(e) for e in entries]

    def integration_health(self) -> List[Dict[str, Any]]:
        """Per integration point success rate over the last 24 hours"""
        since = self._since()
        rows = self.db.query(
            RequestLog.integration_point,
            func.count(RequestLog.id),
            func.sum(case((RequestLog.success_flag == True, 1), else_=0)),  # noqa: E712
            func.avg(RequestLog.response_time_ms),
        ).filter(RequestLog.created_at >= since).group_by(
            RequestLog.integration_point
        ).order_by(RequestLog.integration_point).all()

        results = []
        for point, total, successes, avg in rows:
            recent_errors = self.db.query(RequestLog).filter(
                RequestLog.integration_point == point,
                RequestLog.created_at >= since,
                RequestLog.success_flag == False,  # noqa: E712
            ).order_by(RequestLog.created_at.desc()).limit(RECENT_ERRORS_LIMIT).all()
            successes = int(successes or 0)
            results.append({
                "integration_point": point,
                "total_requests": total,
                "success_rate": round(successes / total * 100, 2) if total else 100.0,
                "avg_response_time_ms": round(float(avg), 2) if avg is not None else None,
                "recent_errors": [
                    {
                        "request_id": e.request_id,
                        "api_endpoint": e.api_endpoint,
                        "response_status": e.response_status,
                        "error_message": e.error_message,
                        "created_at": e.created_at.isoformat(),
                    }
                    for e in recent_errors
                ],
            })
        return results

    @staticmethod
    def serialize(entry: RequestLog) -> Dict[str, Any]:
        return {
            "id": entry.id,
            "request_id": entry.request_id,
            "session_id": entry.session_id,
            "user_id": entry.user_id,
            "frontend_action": entry.frontend_action,
            "frontend_component": entry.frontend_component,
            "frontend_page": entry.frontend_page,
            "api_endpoint": entry.api_endpoint,
            "expected_endpoint": entry.expected_endpoint,
            "http_method": entry.http_method,
            "response_status": entry.response_status,
            "response_time_ms": entry.response_time_ms,
            "success_flag": entry.success_flag,
            "error_message": entry.error_message,
            "error_category": entry.error_category,
            "integration_point": entry.integration_point,
            "expected_integration": entry.expected_integration,
            "integration_success": entry.integration_success,
            "user_tier": entry.user_tier,
            "custom_data": entry.custom_data,
            "created_at": entry.created_at.isoformat(),
        }
