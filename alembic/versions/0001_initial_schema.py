"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-09-02 10:14:08.312514

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

ENUMS = {
    'user_status': ('active', 'blocked', 'pending'),
    'roster_role': ('student', 'teacher'),
    'document_status': ('queued', 'processing', 'completed', 'error', 'cancelled'),
    'progress_item_type': ('lesson', 'lesson_section', 'assessment', 'path', 'course'),
    'progress_status': ('not_started', 'in_progress', 'completed', 'passed', 'failed'),
    'generation_job_status': ('pending', 'processing', 'completed', 'failed', 'cancelled'),
    'generation_task_status': (
        'pending', 'running', 'completed', 'failed', 'skipped', 'cancelled'
    ),
    'outbox_status': ('pending', 'published', 'failed'),
}


def _enum(name):
    return sa.Enum(*ENUMS[name], name=name)


def _uuid():
    return postgresql.UUID(as_uuid=True)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create the organisation, course, document, progress, generation and outbox tables."""
    op.create_table(
        'organisations',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'roles',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('name', sa.String(50), nullable=False, unique=True),
        sa.Column('description', sa.String(255), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'users',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('status', _enum('user_status'), server_default='active', nullable=False),
        sa.Column(
            'organisation_id', _uuid(),
            sa.ForeignKey('organisations.id', ondelete='SET NULL'), nullable=True,
        ),
        *_timestamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_organisation_id', 'users', ['organisation_id'])

    op.create_table(
        'user_roles',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('user_id', _uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role_id', _uuid(), sa.ForeignKey('roles.id', ondelete='CASCADE'), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'role_id', name='uq_user_role_user_role'),
    )

    # course tree
    op.create_table(
        'base_classes',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column(
            'organisation_id', _uuid(),
            sa.ForeignKey('organisations.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('owner_id', _uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_base_classes_organisation_id', 'base_classes', ['organisation_id'])

    op.create_table(
        'paths',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column(
            'base_class_id', _uuid(),
            sa.ForeignKey('base_classes.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('order_index', sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_paths_base_class_id', 'paths', ['base_class_id'])

    op.create_table(
        'lessons',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('path_id', _uuid(), sa.ForeignKey('paths.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('order_index', sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_lessons_path_id', 'lessons', ['path_id'])

    op.create_table(
        'lesson_sections',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('lesson_id', _uuid(), sa.ForeignKey('lessons.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('order_index', sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_lesson_sections_lesson_id', 'lesson_sections', ['lesson_id'])

    op.create_table(
        'assessments',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column(
            'base_class_id', _uuid(),
            sa.ForeignKey('base_classes.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('path_id', _uuid(), sa.ForeignKey('paths.id', ondelete='CASCADE'), nullable=True),
        sa.Column('lesson_id', _uuid(), sa.ForeignKey('lessons.id', ondelete='CASCADE'), nullable=True),
        sa.Column('title', sa.String(255), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_assessments_base_class_id', 'assessments', ['base_class_id'])

    op.create_table(
        'class_instances',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column(
            'base_class_id', _uuid(),
            sa.ForeignKey('base_classes.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('name', sa.String(255), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_class_instances_base_class_id', 'class_instances', ['base_class_id'])

    op.create_table(
        'rosters',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column(
            'class_instance_id', _uuid(),
            sa.ForeignKey('class_instances.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('user_id', _uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', _enum('roster_role'), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('class_instance_id', 'user_id', name='uq_roster_instance_user'),
    )
    op.create_index('ix_rosters_class_instance_id', 'rosters', ['class_instance_id'])
    op.create_index('ix_rosters_user_id', 'rosters', ['user_id'])

    # documents
    op.create_table(
        'documents',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column(
            'organisation_id', _uuid(),
            sa.ForeignKey('organisations.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column(
            'base_class_id', _uuid(),
            sa.ForeignKey('base_classes.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('file_name', sa.String(512), nullable=False),
        sa.Column('storage_path', sa.String(1024), nullable=False, unique=True),
        sa.Column('file_type', sa.String(255), nullable=False),
        sa.Column('size_bytes', sa.BigInteger(), nullable=False),
        sa.Column('uploaded_by', _uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', _enum('document_status'), nullable=False),
        sa.Column('metadata', JSON_TYPE, nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_documents_organisation_id', 'documents', ['organisation_id'])
    op.create_index('ix_documents_base_class_id', 'documents', ['base_class_id'])
    op.create_index('ix_documents_uploaded_by', 'documents', ['uploaded_by'])
    op.create_index('ix_documents_status', 'documents', ['status'])

    op.create_table(
        'lesson_documents',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('lesson_id', _uuid(), sa.ForeignKey('lessons.id', ondelete='CASCADE'), nullable=False),
        sa.Column(
            'document_id', _uuid(),
            sa.ForeignKey('documents.id', ondelete='RESTRICT'), nullable=False,
        ),
        *_timestamps(),
        sa.UniqueConstraint('lesson_id', 'document_id', name='uq_lesson_document'),
    )
    op.create_index('ix_lesson_documents_document_id', 'lesson_documents', ['document_id'])

    # learner progress
    op.create_table(
        'progress',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('user_id', _uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('item_type', _enum('progress_item_type'), nullable=False),
        sa.Column('item_id', _uuid(), nullable=False),
        sa.Column('status', _enum('progress_status'), nullable=False),
        sa.Column('progress_percentage', sa.Float(), nullable=False),
        sa.Column('last_position', JSON_TYPE, nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'item_type', 'item_id', name='uq_progress_user_item'),
    )
    op.create_index('ix_progress_user_id', 'progress', ['user_id'])
    op.create_index('ix_progress_item_id', 'progress', ['item_id'])

    # course generation
    op.create_table(
        'course_generation_jobs',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('user_id', _uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column(
            'base_class_id', _uuid(),
            sa.ForeignKey('base_classes.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('job_type', sa.String(100), nullable=False),
        sa.Column('status', _enum('generation_job_status'), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('job_data', JSON_TYPE, nullable=False),
        sa.Column('is_cleared', sa.Boolean(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_course_generation_jobs_user_id', 'course_generation_jobs', ['user_id'])
    op.create_index('ix_course_generation_jobs_base_class_id', 'course_generation_jobs', ['base_class_id'])
    op.create_index('ix_course_generation_jobs_status', 'course_generation_jobs', ['status'])

    op.create_table(
        'course_generation_tasks',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column(
            'job_id', _uuid(),
            sa.ForeignKey('course_generation_jobs.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('task_type', sa.String(100), nullable=False),
        sa.Column('title', sa.String(255), nullable=True),
        sa.Column('lesson_id', _uuid(), sa.ForeignKey('lessons.id', ondelete='SET NULL'), nullable=True),
        sa.Column('order_index', sa.Integer(), nullable=False),
        sa.Column('status', _enum('generation_task_status'), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('result', JSON_TYPE, nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_course_generation_tasks_job_id', 'course_generation_tasks', ['job_id'])

    # realtime outbox
    op.create_table(
        'outbox_events',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('aggregate_type', sa.String(50), nullable=False),
        sa.Column('aggregate_id', _uuid(), nullable=False),
        sa.Column('payload', JSON_TYPE, nullable=False),
        sa.Column('status', _enum('outbox_status'), server_default='pending', nullable=False),
        sa.Column('attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_error', sa.String(500), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_outbox_events_event_type', 'outbox_events', ['event_type'])
    op.create_index('ix_outbox_events_aggregate_type', 'outbox_events', ['aggregate_type'])
    op.create_index('ix_outbox_events_aggregate_id', 'outbox_events', ['aggregate_id'])
    op.create_index('ix_outbox_events_status', 'outbox_events', ['status'])


def downgrade() -> None:
    """Drop every table, children first, then the enum types."""
    for table in (
        'outbox_events',
        'course_generation_tasks',
        'course_generation_jobs',
        'progress',
        'lesson_documents',
        'documents',
        'rosters',
        'class_instances',
        'assessments',
        'lesson_sections',
        'lessons',
        'paths',
        'base_classes',
        'user_roles',
        'users',
        'roles',
        'organisations',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for name in ENUMS:
            postgresql.ENUM(name=name).drop(bind, checkfirst=True)
