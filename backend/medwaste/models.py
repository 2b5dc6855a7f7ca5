"""SQLAlchemy models for the custody handoff ledger and its collaborators."""
from sqlalchemy import (
    Boolean, Column, String, Integer, Float, DateTime, Text,
    ForeignKey, CheckConstraint, Index, event, text
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from .database import Base
from .services.handoff_rules import (
    CHAIN_STAGES,
    HANDOFF_STATUSES,
    HANDOFF_TYPES,
    recompute_handoff_totals,
)

USER_ROLES = ['admin', 'supervisor', 'driver', 'incinerator_operator']
NOTIFICATION_CHANNELS = ['sms', 'whatsapp', 'telegram']
AUDIT_ACTIONS = [
    'handoff_created', 'handoff_confirmed', 'handoff_token_confirmed',
    'handoff_disputed', 'handoff_resolved', 'handoff_notification_resent',
    'handoff_expired',
]


class MedicalCompany(Base):
    """Medical company (tenant) owning facilities, drivers and bins."""
    __tablename__ = "medical_companies"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    code = Column(String(50), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    users = relationship("User", back_populates="company")


class User(Base):
    """Authenticated actor. Credentials live with the identity service."""
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company_id = Column(UUID(as_uuid=True), ForeignKey("medical_companies.id"), nullable=True, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, index=True)
    phone_number = Column(String(32), nullable=True)
    telegram_chat_id = Column(String(50), nullable=True)
    # Monotonically increasing version used to revoke previously issued tokens.
    token_version = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(role.in_(USER_ROLES), name='chk_user_role'),
    )

    company = relationship("MedicalCompany", back_populates="users")


class WasteBin(Base):
    """Physical waste container registered to a company."""
    __tablename__ = "waste_bins"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company_id = Column(UUID(as_uuid=True), ForeignKey("medical_companies.id"), nullable=True, index=True)
    bin_code = Column(String(100), unique=True, nullable=False, index=True)
    waste_type = Column(String(50), nullable=True)
    fullness = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class IncinerationPlant(Base):
    """Destination plant; operators is a list of {name, phone, shift, active}."""
    __tablename__ = "incineration_plants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=True)
    operators = Column(JSONB, nullable=False, default=list)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CollectionSession(Base):
    """Driver collection session; carries the custody chain it belongs to."""
    __tablename__ = "collection_sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    session_code = Column(String(64), unique=True, nullable=False, index=True)
    driver_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)
    company_id = Column(UUID(as_uuid=True), ForeignKey("medical_companies.id"), nullable=True, index=True)
    status = Column(String(20), nullable=False, default='active')
    handoff_chain_id = Column(String(40), nullable=True, index=True)
    handoff_stage = Column(String(30), nullable=False, default='none')
    handoff_stage_updated_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(status.in_(['active', 'completed', 'cancelled']), name='chk_session_status'),
        CheckConstraint(handoff_stage.in_(list(CHAIN_STAGES)), name='chk_session_handoff_stage'),
        Index('idx_sessions_driver_active', 'driver_id', postgresql_where=(status == 'active')),
    )

    driver = relationship("User")
    handoffs = relationship("Handoff", back_populates="session")


class Handoff(Base):
    """One attested custody transfer between two parties."""
    __tablename__ = "handoffs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    handoff_code = Column(String(32), unique=True, nullable=False, index=True)
    chain_id = Column(String(40), nullable=True, index=True)
    type = Column(String(30), nullable=False)
    sequence = Column(Integer, nullable=False)
    session_id = Column(UUID(as_uuid=True), ForeignKey("collection_sessions.id"), nullable=True, index=True)
    company_id = Column(UUID(as_uuid=True), ForeignKey("medical_companies.id"), nullable=False, index=True)
    facility_id = Column(UUID(as_uuid=True), nullable=True)
    incineration_plant_id = Column(UUID(as_uuid=True), ForeignKey("incineration_plants.id"), nullable=True)

    # Sender snapshot
    sender_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)
    sender_role = Column(String(50), nullable=True)
    sender_name = Column(String(255), nullable=True)
    sender_phone = Column(String(32), nullable=True)
    sender_confirmed_at = Column(DateTime(timezone=True), nullable=True)

    # Receiver snapshot
    receiver_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)
    receiver_role = Column(String(50), nullable=True)
    receiver_name = Column(String(255), nullable=True)
    receiver_phone = Column(String(32), nullable=True)
    receiver_confirmed_at = Column(DateTime(timezone=True), nullable=True)

    # Derived from containers on every write
    total_containers = Column(Integer, nullable=False, default=0)
    total_declared_weight = Column(Float, nullable=False, default=0)
    total_confirmed_weight = Column(Float, nullable=False, default=0)

    status = Column(String(30), nullable=False, default='created', index=True)

    # Only sha256 of the remote confirmation secret is stored
    confirmation_token_hash = Column(String(64), nullable=True, unique=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)

    # Dispute overlay
    dispute_raised_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    dispute_role = Column(String(50), nullable=True)
    dispute_reason = Column(String(255), nullable=True)
    dispute_description = Column(Text, nullable=True)
    dispute_evidence = Column(JSONB, nullable=False, default=list)
    dispute_raised_at = Column(DateTime(timezone=True), nullable=True)
    dispute_resolved_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    dispute_resolution = Column(Text, nullable=True)
    dispute_resolved_at = Column(DateTime(timezone=True), nullable=True)

    completed_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(type.in_(list(HANDOFF_TYPES)), name='chk_handoff_type'),
        CheckConstraint(status.in_(list(HANDOFF_STATUSES)), name='chk_handoff_status'),
        CheckConstraint(sequence.in_([1, 2]), name='chk_handoff_sequence'),
        CheckConstraint('total_containers >= 0', name='chk_handoff_total_containers'),
        # One live handoff per session and step; expired ones may be re-issued.
        Index(
            'uq_handoffs_session_type_active',
            'session_id', 'type',
            unique=True,
            postgresql_where=text("session_id IS NOT NULL AND status <> 'expired'"),
        ),
        Index('idx_handoffs_company_created', 'company_id', 'created_at'),
        Index('idx_handoffs_chain', 'chain_id', 'sequence'),
        Index(
            'idx_handoffs_expires_open', 'expires_at',
            postgresql_where=text("expires_at IS NOT NULL AND status NOT IN ('completed', 'resolved', 'expired')"),
        ),
    )

    session = relationship("CollectionSession", back_populates="handoffs")
    incineration_plant = relationship("IncinerationPlant")
    containers = relationship(
        "HandoffContainer",
        back_populates="handoff",
        cascade="all, delete-orphan",
        order_by="HandoffContainer.position",
    )
    notification_logs = relationship("NotificationLog", back_populates="handoff")


class HandoffContainer(Base):
    """Line item: one waste container inside a handoff."""
    __tablename__ = "handoff_containers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    handoff_id = Column(UUID(as_uuid=True), ForeignKey("handoffs.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    container_id = Column(UUID(as_uuid=True), ForeignKey("waste_bins.id"), nullable=False, index=True)
    bin_code = Column(String(100), nullable=True)
    waste_type = Column(String(50), nullable=True)
    waste_class = Column(String(50), nullable=True)
    fill_level = Column(Integer, nullable=True)
    declared_weight = Column(Float, nullable=True)
    confirmed_weight = Column(Float, nullable=True)
    bag_count = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint('declared_weight IS NULL OR declared_weight >= 0', name='chk_handoff_container_declared'),
        CheckConstraint('confirmed_weight IS NULL OR confirmed_weight >= 0', name='chk_handoff_container_confirmed'),
        CheckConstraint('bag_count IS NULL OR bag_count >= 0', name='chk_handoff_container_bags'),
    )

    handoff = relationship("Handoff", back_populates="containers")


class NotificationLog(Base):
    """One delivery attempt on one channel for one handoff."""
    __tablename__ = "notification_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    handoff_id = Column(UUID(as_uuid=True), ForeignKey("handoffs.id"), nullable=False, index=True)
    recipient_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    recipient_phone = Column(String(32), nullable=True)
    recipient_name = Column(String(255), nullable=True)
    channel = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)
    provider_message_id = Column(String(255), nullable=True)
    content = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(channel.in_(NOTIFICATION_CHANNELS), name='chk_notification_channel'),
        CheckConstraint(status.in_(['sent', 'failed']), name='chk_notification_status'),
        Index('idx_notification_logs_handoff_created', 'handoff_id', 'created_at'),
    )

    handoff = relationship("Handoff", back_populates="notification_logs")


class AuditEvent(Base):
    """Audit event model."""
    __tablename__ = "audit_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company_id = Column(UUID(as_uuid=True), ForeignKey("medical_companies.id"), nullable=True, index=True)
    action = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(UUID(as_uuid=True), nullable=False)
    entity_name = Column(String(255), nullable=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)
    user_name = Column(String(255), nullable=True)
    details = Column(JSONB, default={})
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(action.in_(AUDIT_ACTIONS), name='chk_audit_action'),
        CheckConstraint(entity_type.in_(['handoff']), name='chk_audit_entity_type'),
        Index('idx_audit_events_entity', 'entity_type', 'entity_id'),
    )


@event.listens_for(Handoff, "before_insert")
@event.listens_for(Handoff, "before_update")
def _recompute_totals_before_write(_mapper, _connection, target):
    recompute_handoff_totals(target)
