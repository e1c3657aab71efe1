"""Create users and user_credentials tables

Revision ID: a7c31e90b2d4
Revises:
Create Date: 2026-10-19 09:12:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'a7c31e90b2d4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """
    Creates users and their WebAuthn credentials.
    """
    # ### Create users table ###
    op.create_table('users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_handle', sa.LargeBinary(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=255), nullable=False),
        sa.Column('last_name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_user_handle'), 'users', ['user_handle'], unique=True)

    # ### Create user_credentials table ###
    op.create_table('user_credentials',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('credential_id', sa.LargeBinary(), nullable=False),
        sa.Column('credential_id_hash', sa.LargeBinary(length=64), nullable=False),
        sa.Column('public_key', sa.LargeBinary(), nullable=False),
        sa.Column('attestation_format_id', sa.String(length=32), nullable=False),
        sa.Column('aaguid', sa.Uuid(), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=False),
        sa.Column('signature_counter', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('signature_counter >= 0', name='ck_user_credentials_counter_unsigned'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('credential_id_hash')
    )
    op.create_index(op.f('ix_user_credentials_user_id'), 'user_credentials', ['user_id'], unique=False)


def downgrade() -> None:
    """
    Drops all tables in the reverse order of creation.
    """
    op.drop_index(op.f('ix_user_credentials_user_id'), table_name='user_credentials')
    op.drop_table('user_credentials')

    op.drop_index(op.f('ix_users_user_handle'), table_name='users')
    op.drop_table('users')
