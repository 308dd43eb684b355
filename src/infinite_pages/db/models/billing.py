"""
Billing event model
"""
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from datetime import datetime

from ..base import Base, JSONType


class BillingEvent(Base):
    """Processed webhook events; the unique provider_event_id blocks replays"""
    __tablename__ = "billing_events"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String, nullable=False, index=True)  # 'stripe', 'stripe_connect'
    event_type = Column(String, nullable=False, index=True)
    provider_event_id = Column(String, nullable=False, index=True)
    payload_json = Column(JSONType, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("provider_event_id", name="uq_billing_events_provider_event_id"),
    )
