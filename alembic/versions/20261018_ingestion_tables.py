"""Create ingestion tables: scheduled_jobs, project_social_accounts, social_posts, sync_locks

Revision ID: 20261018_ingestion_tables
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from typing import Union


# revision identifiers, used by Alembic.
revision: str = '20261018_ingestion_tables'
down_revision: Union[str, None] = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'scheduled_jobs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity_id', sa.String(), nullable=False),
        sa.Column('kind', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('scheduled_for', sa.DateTime(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('details', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_scheduled_jobs_entity_id', 'scheduled_jobs', ['entity_id'], unique=False)
    op.create_index('ix_scheduled_jobs_kind', 'scheduled_jobs', ['kind'], unique=False)
    op.create_index('ix_scheduled_jobs_status', 'scheduled_jobs', ['status'], unique=False)
    op.create_index('ix_scheduled_jobs_scheduled_for', 'scheduled_jobs', ['scheduled_for'], unique=False)
    op.create_index(
        'ix_scheduled_jobs_status_scheduled_for', 'scheduled_jobs', ['status', 'scheduled_for'], unique=False
    )

    op.create_table(
        'project_social_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.String(), nullable=False),
        sa.Column('twitter_handle', sa.String(), nullable=True),
        sa.Column('farcaster_username', sa.String(), nullable=True),
        sa.Column('last_twitter_fetch', sa.DateTime(), nullable=True),
        sa.Column('last_farcaster_fetch', sa.DateTime(), nullable=True),
        sa.Column('latest_twitter_post_at', sa.DateTime(), nullable=True),
        sa.Column('latest_farcaster_post_at', sa.DateTime(), nullable=True),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('slug', sa.String(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('project_status', sa.String(), nullable=True),
        sa.Column('quality_score', sa.Float(), nullable=True),
        sa.Column('power_rank', sa.Integer(), nullable=True),
        sa.Column('total_donations', sa.Float(), nullable=True),
        sa.Column('last_update_date', sa.DateTime(), nullable=True),
        sa.Column('last_update_title', sa.String(), nullable=True),
        sa.Column('last_update_content', sa.Text(), nullable=True),
        sa.Column('details', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_project_social_accounts_project_id', 'project_social_accounts', ['project_id'], unique=True
    )

    op.create_table(
        'social_posts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('post_id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), nullable=False),
        sa.Column('platform', sa.String(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('url', sa.String(), nullable=True),
        sa.Column('author', sa.String(), nullable=True),
        sa.Column('posted_at', sa.DateTime(), nullable=False),
        sa.Column('fetched_at', sa.DateTime(), nullable=False),
        sa.Column('details', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_social_posts_post_id', 'social_posts', ['post_id'], unique=True)
    op.create_index('ix_social_posts_project_id', 'social_posts', ['project_id'], unique=False)
    op.create_index('ix_social_posts_posted_at', 'social_posts', ['posted_at'], unique=False)
    op.create_index(
        'ix_social_posts_project_platform_posted', 'social_posts',
        ['project_id', 'platform', 'posted_at'], unique=False
    )

    op.create_table(
        'sync_locks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('lock_key', sa.String(), nullable=False),
        sa.Column('acquired_by', sa.String(), nullable=False),
        sa.Column('acquired_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('lock_key', name='uq_sync_locks_lock_key')
    )
    op.create_index('ix_sync_locks_expires_at', 'sync_locks', ['expires_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_sync_locks_expires_at', table_name='sync_locks')
    op.drop_table('sync_locks')
    op.drop_index('ix_social_posts_project_platform_posted', table_name='social_posts')
    op.drop_index('ix_social_posts_posted_at', table_name='social_posts')
    op.drop_index('ix_social_posts_project_id', table_name='social_posts')
    op.drop_index('ix_social_posts_post_id', table_name='social_posts')
    op.drop_table('social_posts')
    op.drop_index('ix_project_social_accounts_project_id', table_name='project_social_accounts')
    op.drop_table('project_social_accounts')
    op.drop_index('ix_scheduled_jobs_status_scheduled_for', table_name='scheduled_jobs')
    op.drop_index('ix_scheduled_jobs_scheduled_for', table_name='scheduled_jobs')
    op.drop_index('ix_scheduled_jobs_status', table_name='scheduled_jobs')
    op.drop_index('ix_scheduled_jobs_kind', table_name='scheduled_jobs')
    op.drop_index('ix_scheduled_jobs_entity_id', table_name='scheduled_jobs')
    op.drop_table('scheduled_jobs')
