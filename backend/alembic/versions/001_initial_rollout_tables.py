"""Initial rollout planner tables

Revision ID: 001_initial_rollout
Revises:
Create Date: 2026-10-16

Creates all tables for:
- Metadata read by the planner (environments, projects, instances,
  data_sources, databases, sheets, backups)
- Compiled plans (plans, pipelines, stages, tasks, task_dags)
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial_rollout'
down_revision = None
branch_labels = None
depends_on = None


ENGINES = (
    'MYSQL', 'TIDB', 'MARIADB', 'OCEANBASE', 'MSSQL', 'POSTGRES', 'REDSHIFT',
    'CLICKHOUSE', 'SNOWFLAKE', 'SPANNER', 'ORACLE', 'SQLITE', 'MONGODB',
)
TASK_TYPES = (
    'GENERAL', 'DATABASE_CREATE', 'DATABASE_SCHEMA_BASELINE',
    'DATABASE_SCHEMA_UPDATE', 'DATABASE_SCHEMA_UPDATE_SDL',
    'DATABASE_SCHEMA_UPDATE_GHOST_SYNC', 'DATABASE_SCHEMA_UPDATE_GHOST_CUTOVER',
    'DATABASE_DATA_UPDATE', 'DATABASE_BACKUP', 'DATABASE_RESTORE_RESTORE',
    'DATABASE_RESTORE_CUTOVER',
)
TASK_STATUSES = ('PENDING_APPROVAL', 'PENDING', 'RUNNING', 'DONE', 'FAILED', 'CANCELED')


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    ]


def upgrade() -> None:
    # ==========================================================================
    # Metadata Tables
    # ==========================================================================

    op.create_table(
        'environments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('resource_id', sa.String(length=100), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_environments_resource_id', 'environments', ['resource_id'], unique=True)

    op.create_table(
        'projects',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('resource_id', sa.String(length=100), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('tenant_mode', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_projects_resource_id', 'projects', ['resource_id'], unique=True)

    op.create_table(
        'instances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('resource_id', sa.String(length=100), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('engine', sa.Enum(*ENGINES, name='engine'), nullable=False),
        sa.Column('environment_id', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['environment_id'], ['environments.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_instances_resource_id', 'instances', ['resource_id'], unique=True)

    op.create_table(
        'data_sources',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('instance_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.Enum('ADMIN', 'READ_ONLY', name='datasourcetype'), nullable=False, server_default='ADMIN'),
        sa.Column('username', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('password', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('host', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('port', sa.String(length=10), nullable=False, server_default=''),
        *_timestamps(),
        sa.ForeignKeyConstraint(['instance_id'], ['instances.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_data_sources_instance_id', 'data_sources', ['instance_id'], unique=False)

    op.create_table(
        'databases',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('instance_id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('environment_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['instance_id'], ['instances.id']),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
        sa.ForeignKeyConstraint(['environment_id'], ['environments.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('instance_id', 'name'),
    )
    op.create_index('ix_databases_instance_id', 'databases', ['instance_id'], unique=False)
    op.create_index('ix_databases_project_id', 'databases', ['project_id'], unique=False)

    op.create_table(
        'sheets',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('statement', sa.Text(), nullable=False, server_default=''),
        sa.Column('source', sa.Enum('USER', 'SYSTEM_ARTIFACT', name='sheetsource'), nullable=False, server_default='USER'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sheets_project_id', 'sheets', ['project_id'], unique=False)

    op.create_table(
        'backups',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('database_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('status', sa.Enum('PENDING_CREATE', 'DONE', 'FAILED', name='backupstatus'), nullable=False, server_default='DONE'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['database_id'], ['databases.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('database_id', 'name'),
    )
    op.create_index('ix_backups_database_id', 'backups', ['database_id'], unique=False)

    # ==========================================================================
    # Plan & Rollout Tables
    # ==========================================================================

    op.create_table(
        'pipelines',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'plans',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('pipeline_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('config', sa.JSON(), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=False),
        sa.Column('updater_id', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
        sa.ForeignKeyConstraint(['pipeline_id'], ['pipelines.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pipeline_id'),
    )
    op.create_index('ix_plans_project_id', 'plans', ['project_id'], unique=False)

    op.create_table(
        'stages',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('pipeline_id', sa.Integer(), nullable=False),
        sa.Column('environment_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['pipeline_id'], ['pipelines.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['environment_id'], ['environments.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_stages_pipeline_id', 'stages', ['pipeline_id'], unique=False)

    op.create_table(
        'tasks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('pipeline_id', sa.Integer(), nullable=False),
        sa.Column('stage_id', sa.Integer(), nullable=False),
        sa.Column('instance_id', sa.Integer(), nullable=False),
        sa.Column('database_id', sa.Integer(), nullable=True),
        sa.Column('database_name', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('type', sa.Enum(*TASK_TYPES, name='tasktype'), nullable=False),
        sa.Column('status', sa.Enum(*TASK_STATUSES, name='taskstatus'), nullable=False, server_default='PENDING_APPROVAL'),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('earliest_allowed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('creator_id', sa.Integer(), nullable=False),
        sa.Column('updater_id', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['pipeline_id'], ['pipelines.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['stage_id'], ['stages.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['instance_id'], ['instances.id']),
        sa.ForeignKeyConstraint(['database_id'], ['databases.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tasks_pipeline_id', 'tasks', ['pipeline_id'], unique=False)
    op.create_index('ix_tasks_stage_id', 'tasks', ['stage_id'], unique=False)
    op.create_index('ix_tasks_status', 'tasks', ['status'], unique=False)

    op.create_table(
        'task_dags',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('pipeline_id', sa.Integer(), nullable=False),
        sa.Column('from_task_id', sa.Integer(), nullable=False),
        sa.Column('to_task_id', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['pipeline_id'], ['pipelines.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['from_task_id'], ['tasks.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['to_task_id'], ['tasks.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('from_task_id', 'to_task_id'),
    )
    op.create_index('ix_task_dags_pipeline_id', 'task_dags', ['pipeline_id'], unique=False)
    op.create_index('ix_task_dags_to_task_id', 'task_dags', ['to_task_id'], unique=False)


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table('task_dags')
    op.drop_table('tasks')
    op.drop_table('stages')
    op.drop_table('plans')
    op.drop_table('pipelines')
    op.drop_table('backups')
    op.drop_table('sheets')
    op.drop_table('databases')
    op.drop_table('data_sources')
    op.drop_table('instances')
    op.drop_table('projects')
    op.drop_table('environments')

    # Drop enums (no-op on dialects without named enum types)
    for enum_name in ('taskstatus', 'tasktype', 'backupstatus', 'sheetsource', 'datasourcetype', 'engine'):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
