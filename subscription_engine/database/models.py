"""
Database models for the subscription engine.
"""

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text,
    create_engine,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func

Base = declarative_base()


class SenderAggregateRow(Base):
    """Running per-sender statistics, one row per (user, sender)."""
    __tablename__ = 'sender_aggregates'

    id = Column(Integer, primary_key=True)
    user_id = Column(String(255), nullable=False)
    sender_address = Column(String(255), nullable=False)
    sender_name = Column(String(255))
    email_count = Column(Integer, default=0)
    distinct_subject_count = Column(Integer, default=0)
    first_seen_at = Column(DateTime)
    last_seen_at = Column(DateTime)
    saw_list_unsubscribe_header = Column(Boolean, default=False)
    saw_one_click_header = Column(Boolean, default=False)
    has_two_way_conversation = Column(Boolean, default=False)
    # Bounded windows and tallies; sizes are capped by the aggregate itself
    interval_samples = Column(JSON, default=list)
    subject_fingerprints = Column(JSON, default=list)
    sample_subjects = Column(JSON, default=list)
    provider_category_tally = Column(JSON, default=dict)
    inbound_thread_ids = Column(JSON, default=list)
    outbound_thread_ids = Column(JSON, default=list)
    recent_message_ids = Column(JSON, default=list)
    # Latest unsubscribe targets seen
    one_click_url = Column(Text)
    list_unsubscribe_url = Column(Text)
    list_unsubscribe_mailto = Column(Text)
    body_unsubscribe_url = Column(Text)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('uq_user_sender_aggregate', 'user_id', 'sender_address', unique=True),
    )

    def __repr__(self):
        return f"<SenderAggregateRow(user='{self.user_id}', sender='{self.sender_address}', count={self.email_count})>"


class Subscription(Base):
    """Detected subscriptions."""
    __tablename__ = 'subscriptions'

    id = Column(Integer, primary_key=True)
    user_id = Column(String(255), nullable=False)
    sender_email = Column(String(255), nullable=False)
    sender_name = Column(String(255))
    sender_domain = Column(String(255))
    category = Column(String(50), default='other')  # newsletter, marketing, notification, social, other
    frequency = Column(String(50), default='irregular')  # daily, weekly, monthly, irregular
    confidence_score = Column(Float, default=0.0)  # 0.0-1.0
    tier = Column(String(20), default='unlikely')
    unsubscribe_method = Column(String(50), default='unknown')  # header, link, mailto, filter, unknown
    unsubscribe_target = Column(Text)
    unsubscribe_method_data = Column(JSON)
    sample_subjects = Column(JSON, default=list)
    email_count = Column(Integer, default=0)
    last_seen = Column(DateTime)
    is_active = Column(Boolean, default=True)
    is_unsubscribed = Column(Boolean, default=False)
    # Unsubscribe tracking fields
    unsubscribe_status = Column(String(50), default='not_requested')  # not_requested, pending, succeeded, failed
    unsubscribe_reason = Column(Text)
    unsubscribed_at = Column(DateTime)
    # Violation tracking
    emails_after_unsubscribe = Column(Integer, default=0)
    last_violation_at = Column(DateTime)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    unsubscribe_attempts = relationship("UnsubscribeAttempt", back_populates="subscription",
                                        cascade="all, delete-orphan")

    __table_args__ = (
        Index('uq_user_sender_subscription', 'user_id', 'sender_email', unique=True),
        Index('idx_category', 'category'),
        Index('idx_active_subs', 'is_active', 'confidence_score'),
        Index('idx_unsubscribe_status', 'unsubscribe_status'),
    )

    def __repr__(self):
        return f"<Subscription(sender='{self.sender_email}', category='{self.category}', status='{self.unsubscribe_status}')>"


class UnsubscribeAttempt(Base):
    """Track unsubscribe attempts and their results."""
    __tablename__ = 'unsubscribe_attempts'

    id = Column(Integer, primary_key=True)
    subscription_id = Column(Integer, ForeignKey('subscriptions.id'), nullable=False)
    attempted_at = Column(DateTime, default=func.now())
    method_used = Column(String(50), nullable=False)
    method_data = Column(JSON)
    target = Column(Text)
    status = Column(String(50), nullable=False)  # succeeded, failed
    response_code = Column(Integer)
    error_message = Column(Text)

    subscription = relationship("Subscription", back_populates="unsubscribe_attempts")

    def __repr__(self):
        return f"<UnsubscribeAttempt(subscription_id={self.subscription_id}, status='{self.status}')>"


class UserProfileRow(Base):
    """What the false-positive guard knows about a mailbox owner."""
    __tablename__ = 'user_profiles'

    id = Column(Integer, primary_key=True)
    user_id = Column(String(255), nullable=False, unique=True)
    first_name = Column(String(255))
    whitelisted_domains = Column(JSON, default=list)
    conversation_tokens = Column(JSON, default=list)

    def __repr__(self):
        return f"<UserProfileRow(user='{self.user_id}')>"


class MailFilterRule(Base):
    """Provider-side filter queued as the fallback unsubscribe method."""
    __tablename__ = 'mail_filter_rules'

    id = Column(Integer, primary_key=True)
    user_id = Column(String(255), nullable=False)
    sender_email = Column(String(255), nullable=False)
    criteria = Column(String(512), nullable=False)
    action = Column(String(50), default='archive')
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        Index('idx_filter_user_sender', 'user_id', 'sender_email'),
    )

    def __repr__(self):
        return f"<MailFilterRule(user='{self.user_id}', criteria='{self.criteria}')>"


def create_database_engine(database_url: str = "sqlite:///subscription_engine.db"):
    """Create and return a database engine."""
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        # One shared connection, otherwise every pooled connection gets its own empty database
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool
        )
    engine = create_engine(
        database_url,
        echo=False,  # Set to True for SQL debugging
        pool_pre_ping=True,
        connect_args={"check_same_thread": False} if database_url.startswith("sqlite") else {}
    )
    return engine


def create_tables(engine):
    """Create all tables in the database."""
    Base.metadata.create_all(engine)


def get_session_maker(engine):
    """Get a session maker for the database."""
    return sessionmaker(bind=engine, expire_on_commit=False)
