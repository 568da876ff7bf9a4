"""create users, hostel_admins, workers, complaints and assignment_audits

Revision ID: 001_grievance_tables
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = '001_grievance_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('otp_hash', sa.String(), nullable=True),
        sa.Column('otp_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('otp_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('email'),
    )
    op.create_index('ix_users_email', 'users', ['email'])

    op.create_table(
        'hostel_admins',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('hostel', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('username'),
    )
    op.create_index('ix_hostel_admins_hostel', 'hostel_admins', ['hostel'])

    op.create_table(
        'workers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('phone', sa.String(), nullable=False),
        sa.Column('hostel', sa.String(), nullable=False),
        sa.Column('work_type', sa.String(), nullable=False),
        sa.Column('availability', sa.String(), nullable=False, server_default='Available'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("availability IN ('Available', 'Busy')", name='chk_worker_availability'),
    )
    op.create_index('ix_workers_phone', 'workers', ['phone'])
    op.create_index('ix_workers_hostel', 'workers', ['hostel'])

    op.create_table(
        'complaints',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('hostel_name', sa.String(), nullable=False),
        sa.Column('room_no', sa.String(), nullable=False),
        sa.Column('floor_no', sa.String(), nullable=True),
        sa.Column('phone_number', sa.String(), nullable=True),
        sa.Column('photo_url', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='Pending'),
        sa.Column('priority', sa.String(), nullable=False, server_default='normal'),
        sa.Column('assigned_worker_id', sa.Integer(), sa.ForeignKey('workers.id'), nullable=True),
        sa.Column('worker_proof_url', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("status IN ('Pending', 'In Progress', 'Resolved')", name='chk_complaint_status'),
        sa.CheckConstraint("priority IN ('normal', 'critical')", name='chk_complaint_priority'),
    )
    op.create_index('ix_complaints_user_id', 'complaints', ['user_id'])
    op.create_index('ix_complaints_hostel_name', 'complaints', ['hostel_name'])
    op.create_index('ix_complaints_status', 'complaints', ['status'])
    op.create_index('ix_complaints_assigned_worker_id', 'complaints', ['assigned_worker_id'])
    op.create_index('ix_complaints_created_at', 'complaints', ['created_at'])

    op.create_table(
        'assignment_audits',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('complaint_id', sa.Integer(), sa.ForeignKey('complaints.id'), nullable=False),
        sa.Column('worker_id', sa.Integer(), sa.ForeignKey('workers.id'), nullable=False),
        sa.Column('hostel', sa.String(), nullable=False),
        sa.Column('replaced_worker_id', sa.Integer(), nullable=True),
        sa.Column('notified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_assignment_audits_complaint_id', 'assignment_audits', ['complaint_id'])


def downgrade():
    op.drop_table('assignment_audits')
    op.drop_table('complaints')
    op.drop_table('workers')
    op.drop_table('hostel_admins')
    op.drop_table('users')
