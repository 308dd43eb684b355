"""
Request tracking and system log models
"""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Index
from datetime import datetime

from ..base import Base, JSONType


class RequestLog(Base):
    """Client-reported record of one frontend action and the API call it made"""
    __tablename__ = "request_logs"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(String, nullable=False, unique=True, index=True)
    session_id = Column(String, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    frontend_action = Column(String, nullable=False)
    frontend_component = Column(String, nullable=False)
    frontend_page = Column(String, nullable=True)

    api_endpoint = Column(String, nullable=False, index=True)
    expected_endpoint = Column(String, nullable=True)
    http_method = Column(String(10), nullable=False)
    request_body_size = Column(Integer, nullable=True)
    response_status = Column(Integer, nullable=False)
    response_body_size = Column(Integer, nullable=True)
    response_time_ms = Column(Integer, nullable=True)

    success_flag = Column(Boolean, nullable=False, index=True)
    error_message = Column(Text, nullable=True)
    error_category = Column(String, nullable=True, index=True)

    integration_point = Column(String, nullable=False, index=True)
    expected_integration = Column(String, nullable=True)
    integration_success = Column(Boolean, nullable=True)

    user_tier = Column(String, nullable=True)
    device_info = Column(JSONType, nullable=True)
    total_time_ms = Column(Integer, nullable=True)
    custom_data = Column(JSONType, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("ix_request_logs_integration_created", "integration_point", "created_at"),
    )


class SystemLog(Base):
    """Audit trail for maintenance tasks"""
    __tablename__ = "system_logs"

    id = Column(Integer, primary_key=True, index=True)
    log_type = Column(String, nullable=False, index=True)
    message = Column(String, nullable=False)
    details = Column(JSONType, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
