# models.py — Database models for CertiSphere
# - Users (clients and staff) with time-boxed reset/deletion tokens
# - Certificates with a status state machine and payment fields
# - Documents uploaded against certificates
# - Conversations + append-only messages
# - Notifications that may request a new document

from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def _values_enum(enum_cls, name: str) -> SQLEnum:
    """Persist enum values (e.g. "Pending Payment") rather than member names."""
    return SQLEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    CLIENT = "client"
    ADMIN = "admin"


class CertificateStatus(str, PyEnum):
    PENDING_PAYMENT = "Pending Payment"
    SUBMITTED = "Submitted"
    UNDER_REVIEW = "Under Review"
    ADDITIONAL_DOCUMENTS_REQUIRED = "Additional Documents Required"
    COMPLETED = "Completed"


class ConversationStatus(str, PyEnum):
    PENDING = "pending"
    ANSWERED = "answered"
    TEAM_CHAT = "team-chat"


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_code = Column(String(20), unique=True, nullable=False, index=True)
    role = Column(_values_enum(UserRole, "user_role"), default=UserRole.CLIENT, nullable=False, index=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    business_name = Column(String, nullable=True)
    business_type = Column(String, nullable=True)
    industry = Column(String, nullable=True)
    contact_email = Column(String, unique=True, nullable=False, index=True)
    phone_number = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)
    reset_token = Column(String, nullable=True, index=True)
    reset_token_expires = Column(DateTime(timezone=True), nullable=True)
    delete_token = Column(String, nullable=True, index=True)
    delete_token_expires = Column(DateTime(timezone=True), nullable=True)
    # Profile edits wait here until the emailed link is opened
    profile_token = Column(String, nullable=True, index=True)
    profile_token_expires = Column(DateTime(timezone=True), nullable=True)
    pending_profile = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    certificates = relationship("Certificate", back_populates="owner", foreign_keys="Certificate.user_id")
    notifications = relationship("Notification", back_populates="user")


# ============================================================
# CERTIFICATES
# ============================================================

class Certificate(Base):
    __tablename__ = "certificates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # NULL until a type is chosen; the row is created bare on first upload
    status = Column(_values_enum(CertificateStatus, "certificate_status"), nullable=True, index=True)
    certificate_type = Column(String, nullable=True)
    certificate_name = Column(String, nullable=True)
    iso_standards = Column(JSON, nullable=True)
    price = Column(Integer, nullable=True)  # minor currency units (cents)
    paid = Column(Boolean, default=False, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    # Set when a payment intent is issued; type and price are frozen from then on
    payment_intent_id = Column(String, nullable=True)
    payment_started_at = Column(DateTime(timezone=True), nullable=True)
    certificate_reference = Column(String, unique=True, nullable=True)
    assigned_admin_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    owner = relationship("User", back_populates="certificates", foreign_keys=[user_id])
    assigned_admin = relationship("User", foreign_keys=[assigned_admin_id])
    documents = relationship("Document", back_populates="certificate")

    __table_args__ = (
        Index("idx_certificate_user_status", "user_id", "status"),
    )


# ============================================================
# DOCUMENTS
# ============================================================

class Document(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    certificate_id = Column(Integer, ForeignKey("certificates.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    file_name = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    is_correct = Column(Boolean, nullable=True)  # unset until staff review
    uploaded_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    certificate = relationship("Certificate", back_populates="documents")


# ============================================================
# CONVERSATIONS & MESSAGES
# ============================================================

class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    certificate_id = Column(Integer, ForeignKey("certificates.id"), nullable=True)
    conversation_status = Column(_values_enum(ConversationStatus, "conversation_status"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    messages = relationship("Message", back_populates="conversation", order_by="Message.created_at")

    __table_args__ = (
        # At most one team-chat conversation system-wide
        Index(
            "uq_conversation_team_chat", "conversation_status", unique=True,
            postgresql_where=text("conversation_status = 'team-chat'"),
            sqlite_where=text("conversation_status = 'team-chat'"),
        ),
    )


class Message(Base):
    """Append-only: there is no edit or delete path."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    sender_role = Column(_values_enum(UserRole, "sender_role"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    conversation = relationship("Conversation", back_populates="messages")

    __table_args__ = (
        Index("idx_message_conversation_created", "conversation_id", "created_at"),
    )


# ============================================================
# NOTIFICATIONS
# ============================================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    certificate_id = Column(Integer, ForeignKey("certificates.id"), nullable=True, index=True)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    request_new_document = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    user = relationship("User", back_populates="notifications")
