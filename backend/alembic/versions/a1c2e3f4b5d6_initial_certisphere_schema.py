"""Initial CertiSphere schema

Revision ID: a1c2e3f4b5d6
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates 6 tables:
- users (clients and staff, reset/deletion/profile-change tokens)
- certificates (status state machine, price in cents, one-time reference)
- documents (uploads, staff correctness flag)
- conversations (at most one team-chat row, enforced by a partial unique index)
- messages (append-only)
- notifications
"""
from alembic import op
import sqlalchemy as sa

revision = 'a1c2e3f4b5d6'
down_revision = None
branch_labels = None
depends_on = None

USER_ROLE = sa.Enum('client', 'admin', name='user_role')
SENDER_ROLE = sa.Enum('client', 'admin', name='sender_role')
CERTIFICATE_STATUS = sa.Enum(
    'Pending Payment', 'Submitted', 'Under Review', 'Additional Documents Required', 'Completed',
    name='certificate_status',
)
CONVERSATION_STATUS = sa.Enum('pending', 'answered', 'team-chat', name='conversation_status')


def upgrade() -> None:
    # ---- users ----
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_code', sa.String(20), nullable=False),
        sa.Column('role', USER_ROLE, nullable=False),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('business_name', sa.String(), nullable=True),
        sa.Column('business_type', sa.String(), nullable=True),
        sa.Column('industry', sa.String(), nullable=True),
        sa.Column('contact_email', sa.String(), nullable=False),
        sa.Column('phone_number', sa.String(), nullable=True),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('reset_token', sa.String(), nullable=True),
        sa.Column('reset_token_expires', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delete_token', sa.String(), nullable=True),
        sa.Column('delete_token_expires', sa.DateTime(timezone=True), nullable=True),
        sa.Column('profile_token', sa.String(), nullable=True),
        sa.Column('profile_token_expires', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pending_profile', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_user_code', 'users', ['user_code'], unique=True)
    op.create_index('ix_users_contact_email', 'users', ['contact_email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_reset_token', 'users', ['reset_token'])
    op.create_index('ix_users_delete_token', 'users', ['delete_token'])
    op.create_index('ix_users_profile_token', 'users', ['profile_token'])
    op.create_index('ix_users_created_at', 'users', ['created_at'])

    # ---- certificates ----
    op.create_table(
        'certificates',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', CERTIFICATE_STATUS, nullable=True),
        sa.Column('certificate_type', sa.String(), nullable=True),
        sa.Column('certificate_name', sa.String(), nullable=True),
        sa.Column('iso_standards', sa.JSON(), nullable=True),
        sa.Column('price', sa.Integer(), nullable=True),
        sa.Column('paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_intent_id', sa.String(), nullable=True),
        sa.Column('payment_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('certificate_reference', sa.String(), nullable=True),
        sa.Column('assigned_admin_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('certificate_reference'),
    )
    op.create_index('ix_certificates_user_id', 'certificates', ['user_id'])
    op.create_index('ix_certificates_status', 'certificates', ['status'])
    op.create_index('ix_certificates_assigned_admin_id', 'certificates', ['assigned_admin_id'])
    op.create_index('ix_certificates_created_at', 'certificates', ['created_at'])
    op.create_index('idx_certificate_user_status', 'certificates', ['user_id', 'status'])

    # ---- documents ----
    op.create_table(
        'documents',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('certificate_id', sa.Integer(), sa.ForeignKey('certificates.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('file_name', sa.String(), nullable=False),
        sa.Column('file_path', sa.String(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=True),
        sa.Column('uploaded_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_documents_certificate_id', 'documents', ['certificate_id'])
    op.create_index('ix_documents_user_id', 'documents', ['user_id'])
    op.create_index('ix_documents_uploaded_at', 'documents', ['uploaded_at'])

    # ---- conversations ----
    op.create_table(
        'conversations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('admin_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('certificate_id', sa.Integer(), sa.ForeignKey('certificates.id'), nullable=True),
        sa.Column('conversation_status', CONVERSATION_STATUS, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_conversations_client_id', 'conversations', ['client_id'])
    op.create_index('ix_conversations_admin_id', 'conversations', ['admin_id'])
    op.create_index('ix_conversations_updated_at', 'conversations', ['updated_at'])
    op.create_index(
        'uq_conversation_team_chat', 'conversations', ['conversation_status'], unique=True,
        postgresql_where=sa.text("conversation_status = 'team-chat'"),
        sqlite_where=sa.text("conversation_status = 'team-chat'"),
    )

    # ---- messages ----
    op.create_table(
        'messages',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('conversations.id'), nullable=False),
        sa.Column('sender_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('sender_role', SENDER_ROLE, nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_messages_sender_id', 'messages', ['sender_id'])
    op.create_index('idx_message_conversation_created', 'messages', ['conversation_id', 'created_at'])

    # ---- notifications ----
    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('certificate_id', sa.Integer(), sa.ForeignKey('certificates.id'), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('request_new_document', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_certificate_id', 'notifications', ['certificate_id'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('messages')
    op.drop_table('conversations')
    op.drop_table('documents')
    op.drop_table('certificates')
    op.drop_table('users')
    CONVERSATION_STATUS.drop(op.get_bind(), checkfirst=True)
    CERTIFICATE_STATUS.drop(op.get_bind(), checkfirst=True)
    SENDER_ROLE.drop(op.get_bind(), checkfirst=True)
    USER_ROLE.drop(op.get_bind(), checkfirst=True)
