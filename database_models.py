from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from datetime import datetime
from database import Base


class User(Base):
    """
    User model. Each user is a CRM tenant; its trial window starts at created_at.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    hashed_password = Column(String, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    stripe_customer_id = Column(String, nullable=True, index=True)
    stripe_subscription_id = Column(String, nullable=True)


class Subscription(Base):
    """
    Local mirror of a Stripe subscription, kept current by the billing webhook.
    """
    __tablename__ = "subscriptions"

    id = Column(String, primary_key=True)  # Stripe subscription id
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    stripe_customer_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False)
    price_id = Column(String, nullable=True)
    plan = Column(String, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    last_event_created = Column(Integer, nullable=True)  # Stripe event.created of the last applied event
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
