"""initial create registrants

Revision ID: 001
Revises: 
Create Date: 2025-10-02 18:10:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'registrants',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('full_name', sa.String(length=200), nullable=False),
        sa.Column('role', sa.String(length=120), nullable=True),
        sa.Column('cpf', sa.String(length=11), nullable=False),
        sa.Column('email', sa.String(length=200), nullable=False),
        sa.Column('phone', sa.String(length=20), nullable=False),
        sa.Column('company', sa.String(length=200), nullable=True),
        sa.Column('municipality', sa.String(length=120), nullable=False),
        sa.Column('postal_code', sa.String(length=8), nullable=True),
        sa.Column('attends_day_1', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('attends_day_2', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('consents_communications', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('wants_certificate', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('payment_status', sa.String(length=20), nullable=False, server_default='not_requested'),
        sa.Column('registration_code', sa.String(length=10), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # CPF, e-mail e código de inscrição são únicos
    op.create_index('ix_registrants_cpf', 'registrants', ['cpf'], unique=True)
    op.create_index('ix_registrants_email', 'registrants', ['email'], unique=True)
    op.create_index('ix_registrants_registration_code', 'registrants', ['registration_code'], unique=True)


def downgrade() -> None:
    op.drop_index('ix_registrants_registration_code', table_name='registrants')
    op.drop_index('ix_registrants_email', table_name='registrants')
    op.drop_index('ix_registrants_cpf', table_name='registrants')

    op.drop_table('registrants')
