from alembic import op
import sqlalchemy as sa

revision = '0001'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False, unique=True),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('profile', sa.JSON(), nullable=False),
        sa.Column('reset_password_token', sa.String()),
        sa.Column('reset_password_expire', sa.Integer()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now())
    )
    op.create_index('ix_users_reset_password_token', 'users', ['reset_password_token'])
    op.create_table(
        'bands',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now())
    )
    op.create_table(
        'band_members',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('band_id', sa.Integer(), sa.ForeignKey('bands.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(), nullable=False, server_default='member'),
        sa.Column('joined_at', sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint('band_id', 'user_id', name='uq_band_member')
    )
    op.create_table(
        'rehearsals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('band_id', sa.Integer(), sa.ForeignKey('bands.id'), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('is_cancelled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('document', sa.JSON(), nullable=False)
    )
    # Mirrors the {bandId, startTime} index of the document collection
    op.create_index('ix_rehearsals_band_start', 'rehearsals', ['band_id', 'start_time'])

def downgrade():
    op.drop_index('ix_rehearsals_band_start', table_name='rehearsals')
    op.drop_table('rehearsals')
    op.drop_table('band_members')
    op.drop_table('bands')
    op.drop_index('ix_users_reset_password_token', table_name='users')
    op.drop_table('users')
