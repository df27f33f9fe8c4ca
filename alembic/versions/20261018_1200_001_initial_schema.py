"""Initial schema for credential anchoring

Revision ID: 001
Revises:
Create Date: 2026-10-18 12:00:00.000000

Creates 3 tables:
- credentials (keyed by proof hash)
- anchors (append-only, no cascading foreign key)
- audit_logs
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql')


def upgrade() -> None:
    # Create credentials table
    op.create_table(
        'credentials',
        sa.Column('proof_hash', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('file_name', sa.String(length=512), nullable=False),
        sa.Column('content_type', sa.String(length=255), nullable=False),
        sa.Column('size_bytes', sa.Integer(), nullable=False),
        sa.Column('payload_kind', sa.String(length=16), nullable=False),
        sa.Column('storage_handle', sa.String(length=512), nullable=True),
        sa.Column('status', sa.Enum('uploaded', 'vaulted', 'anchored', 'failed', name='credential_status_enum'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('proof_hash')
    )
    op.create_index('idx_credentials_status_created', 'credentials', ['status', 'created_at'], unique=False)
    op.create_index(op.f('ix_credentials_storage_handle'), 'credentials', ['storage_handle'], unique=False)

    # Create anchors table
    op.create_table(
        'anchors',
        sa.Column('anchor_id', sa.String(length=32), nullable=False),
        sa.Column('proof_hash', sa.String(length=64), nullable=False),
        sa.Column('anchor_type', sa.Enum('blockchain', 'proof_hash_verification', name='anchor_type_enum'), nullable=False),
        sa.Column('tx_id', sa.String(length=130), nullable=True),
        sa.Column('status', sa.Enum('pending', 'confirmed', 'failed', 'verified', name='anchor_status_enum'), nullable=False),
        sa.Column('block_height', sa.BigInteger(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('node_response', JSON_TYPE, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('anchor_id')
    )
    op.create_index('idx_anchors_hash_created', 'anchors', ['proof_hash', 'created_at'], unique=False)
    op.create_index('idx_anchors_status', 'anchors', ['status'], unique=False)
    op.create_index(op.f('ix_anchors_proof_hash'), 'anchors', ['proof_hash'], unique=False)
    op.create_index(op.f('ix_anchors_tx_id'), 'anchors', ['tx_id'], unique=False)

    # Create audit_logs table
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('actor', sa.String(length=255), nullable=True),
        sa.Column('proof_hash', sa.String(length=64), nullable=True),
        sa.Column('metadata_json', JSON_TYPE, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_audit_logs_entity', 'audit_logs', ['entity_type', 'entity_id'], unique=False)
    op.create_index(op.f('ix_audit_logs_proof_hash'), 'audit_logs', ['proof_hash'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_audit_logs_proof_hash'), table_name='audit_logs')
    op.drop_index('idx_audit_logs_entity', table_name='audit_logs')
    op.drop_table('audit_logs')

    op.drop_index(op.f('ix_anchors_tx_id'), table_name='anchors')
    op.drop_index(op.f('ix_anchors_proof_hash'), table_name='anchors')
    op.drop_index('idx_anchors_status', table_name='anchors')
    op.drop_index('idx_anchors_hash_created', table_name='anchors')
    op.drop_table('anchors')

    op.drop_index(op.f('ix_credentials_storage_handle'), table_name='credentials')
    op.drop_index('idx_credentials_status_created', table_name='credentials')
    op.drop_table('credentials')

    # Drop ENUM types (postgres only; no-op elsewhere)
    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        op.execute('DROP TYPE IF EXISTS anchor_status_enum')
        op.execute('DROP TYPE IF EXISTS anchor_type_enum')
        op.execute('DROP TYPE IF EXISTS credential_status_enum')
