"""initial migration: task, rule, justification, evidence

Revision ID: initial_migration
Revises: 
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'initial_migration'
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_JUSTIFICATION = "status IN ('pending', 'approved')"


def upgrade():
    conn = op.get_bind()
    tables = sa.inspect(conn).get_table_names()

    if 'task' not in tables:
        op.create_table('task',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('tenant_id', sa.String(length=64), nullable=False),
            sa.Column('competencia_ym', sa.String(length=7), nullable=False),
            sa.Column('recorrencia', sa.String(length=80), nullable=False),
            sa.Column('tipo', sa.String(length=80), server_default='', nullable=False),
            sa.Column('atividade', sa.String(length=200), nullable=False),
            sa.Column('observacoes', sa.Text(), nullable=True),
            sa.Column('responsavel_email', sa.String(length=150), nullable=False),
            sa.Column('responsavel_nome', sa.String(length=150), server_default='', nullable=False),
            sa.Column('area', sa.String(length=120), nullable=False),
            sa.Column('prazo', sa.Date(), nullable=False),
            sa.Column('realizado', sa.Date(), nullable=True),
            sa.Column('parent_task_id', sa.String(length=36), nullable=True),
            sa.Column('justification_blocked', sa.Boolean(), server_default='0', nullable=False),
            sa.Column('justification_blocked_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('justification_blocked_by', sa.String(length=150), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('created_by', sa.String(length=150), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_by', sa.String(length=150), nullable=False),
            sa.Column('prazo_modified_by', sa.String(length=150), nullable=True),
            sa.Column('prazo_modified_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('realizado_por', sa.String(length=150), nullable=True),
            sa.ForeignKeyConstraint(['parent_task_id'], ['task.id']),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_task_tenant_id'), 'task', ['tenant_id'], unique=False)
        op.create_index(op.f('ix_task_parent_task_id'), 'task', ['parent_task_id'], unique=False)
        op.create_index('idx_task_tenant_area', 'task', ['tenant_id', 'area'], unique=False)
        op.create_index('idx_task_tenant_resp', 'task', ['tenant_id', 'responsavel_email'], unique=False)
        op.create_index('idx_task_tenant_ym', 'task', ['tenant_id', 'competencia_ym'], unique=False)

    if 'rule' not in tables:
        op.create_table('rule',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('tenant_id', sa.String(length=64), nullable=False),
            sa.Column('area', sa.String(length=120), nullable=False),
            sa.Column('allowed_recorrencias', sa.Text(), server_default='[]', nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_by', sa.String(length=150), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('tenant_id', 'area', name='uq_rule_tenant_area')
        )

    if 'justification' not in tables:
        op.create_table('justification',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('tenant_id', sa.String(length=64), nullable=False),
            sa.Column('task_id', sa.String(length=36), nullable=False),
            sa.Column('description', sa.Text(), nullable=False),
            sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('created_by', sa.String(length=150), nullable=False),
            sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('reviewed_by', sa.String(length=150), nullable=True),
            sa.Column('review_comment', sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(['task_id'], ['task.id']),
            sa.PrimaryKeyConstraint('id'),
            sa.CheckConstraint(
                "status IN ('pending', 'approved', 'refused', 'blocked')",
                name='ck_justification_status'
            )
        )
        op.create_index(op.f('ix_justification_tenant_id'), 'justification', ['tenant_id'], unique=False)
        op.create_index(op.f('ix_justification_task_id'), 'justification', ['task_id'], unique=False)
        # Uma justificativa ativa (pendente ou aprovada) por tarefa
        op.create_index(
            'uq_justification_active_task', 'justification', ['task_id'], unique=True,
            sqlite_where=sa.text(ACTIVE_JUSTIFICATION),
            postgresql_where=sa.text(ACTIVE_JUSTIFICATION)
        )

    if 'evidence' not in tables:
        op.create_table('evidence',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('tenant_id', sa.String(length=64), nullable=False),
            sa.Column('task_id', sa.String(length=36), nullable=True),
            sa.Column('justification_id', sa.String(length=36), nullable=True),
            sa.Column('file_name', sa.String(length=255), nullable=False),
            sa.Column('mime_type', sa.String(length=120), nullable=False),
            sa.Column('file_size', sa.Integer(), nullable=False),
            sa.Column('storage_ref', sa.String(length=500), nullable=False),
            sa.Column('uploaded_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('uploaded_by', sa.String(length=150), nullable=False),
            sa.ForeignKeyConstraint(['task_id'], ['task.id']),
            sa.ForeignKeyConstraint(['justification_id'], ['justification.id']),
            sa.PrimaryKeyConstraint('id'),
            sa.CheckConstraint(
                "(task_id IS NULL) <> (justification_id IS NULL)",
                name='ck_evidence_owner'
            )
        )
        op.create_index(op.f('ix_evidence_tenant_id'), 'evidence', ['tenant_id'], unique=False)
        op.create_index(op.f('ix_evidence_task_id'), 'evidence', ['task_id'], unique=False)
        op.create_index(op.f('ix_evidence_justification_id'), 'evidence', ['justification_id'], unique=False)


def downgrade():
    op.drop_table('evidence')
    op.drop_table('justification')
    op.drop_table('rule')
    op.drop_table('task')
