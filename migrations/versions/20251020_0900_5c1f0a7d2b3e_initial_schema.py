"""initial schema

Revision ID: 5c1f0a7d2b3e
Revises:
Create Date: 2025-10-20 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5c1f0a7d2b3e'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade():
    # Identity
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('role', sa.String(32), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('must_change_password', sa.Boolean(), nullable=False),
        sa.Column('user_metadata', sa.JSON(), nullable=False),
        *_timestamps(),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'profiles',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(64), nullable=False),
        sa.Column('middle_name', sa.String(64), nullable=True),
        sa.Column('last_name', sa.String(64), nullable=False),
        sa.Column('role', sa.String(32), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['id'], ['users.id'], name='fk_profiles_id_users', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_profiles'),
    )

    # Calendar and classes
    op.create_table(
        'classes',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(64), nullable=False),
        sa.Column('grade_level', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('grade_level >= 1', name='ck_classes_grade_level_positive'),
        sa.PrimaryKeyConstraint('id', name='pk_classes'),
        sa.UniqueConstraint('name', name='uq_classes_name'),
    )

    op.create_table(
        'academic_years',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(64), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('end_date > start_date', name='ck_academic_years_date_order'),
        sa.PrimaryKeyConstraint('id', name='pk_academic_years'),
        sa.UniqueConstraint('name', name='uq_academic_years_name'),
    )
    op.create_index(
        'uq_academic_years_single_active', 'academic_years', ['is_active'], unique=True,
        postgresql_where=sa.text('is_active'), sqlite_where=sa.text('is_active'),
    )

    op.create_table(
        'terms',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('academic_year_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(48), nullable=False),
        sa.Column('ordinal', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('ordinal >= 1', name='ck_terms_ordinal_positive'),
        sa.ForeignKeyConstraint(
            ['academic_year_id'], ['academic_years.id'],
            name='fk_terms_academic_year_id_academic_years', ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_terms'),
    )
    op.create_index('ix_terms_academic_year_id', 'terms', ['academic_year_id'])
    op.create_index('uq_terms_year_ordinal', 'terms', ['academic_year_id', 'ordinal'], unique=True)
    op.create_index(
        'uq_terms_single_active_per_year', 'terms', ['academic_year_id'], unique=True,
        postgresql_where=sa.text('is_active'), sqlite_where=sa.text('is_active'),
    )

    # Students
    op.create_table(
        'students',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('student_id', sa.String(32), nullable=False),
        sa.Column('class_id', sa.Uuid(), nullable=False),
        sa.Column('gender', sa.String(16), nullable=False),
        sa.Column('student_type', sa.String(16), nullable=False),
        sa.Column('stream', sa.String(32), nullable=True),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('guardian_email', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("student_type IN ('internal','external')", name='ck_students_student_type_valid'),
        sa.ForeignKeyConstraint(['id'], ['users.id'], name='fk_students_id_users', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['class_id'], ['classes.id'], name='fk_students_class_id_classes', ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id', name='pk_students'),
        sa.UniqueConstraint('student_id', name='uq_students_student_id'),
    )
    op.create_index('ix_students_class_id', 'students', ['class_id'])

    op.create_table(
        'enrollments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('student_id', sa.Uuid(), nullable=False),
        sa.Column('class_id', sa.Uuid(), nullable=False),
        sa.Column('academic_year_id', sa.Uuid(), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('enrolled_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "status IN ('active','completed','dropped','transferred','expelled')",
            name='ck_enrollments_status_valid',
        ),
        sa.ForeignKeyConstraint(
            ['student_id'], ['students.id'], name='fk_enrollments_student_id_students', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['class_id'], ['classes.id'], name='fk_enrollments_class_id_classes', ondelete='RESTRICT'
        ),
        sa.ForeignKeyConstraint(
            ['academic_year_id'], ['academic_years.id'],
            name='fk_enrollments_academic_year_id_academic_years', ondelete='RESTRICT',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_enrollments'),
        sa.UniqueConstraint('student_id', 'academic_year_id', name='uq_enrollments_student_year'),
    )
    op.create_index('ix_enrollments_student_id', 'enrollments', ['student_id'])
    op.create_index('ix_enrollments_class_id', 'enrollments', ['class_id'])
    op.create_index('ix_enrollments_academic_year_id', 'enrollments', ['academic_year_id'])

    # Curriculum
    op.create_table(
        'subjects',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(128), nullable=False),
        sa.Column('code', sa.String(16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_subjects'),
        sa.UniqueConstraint('code', name='uq_subjects_code'),
    )

    op.create_table(
        'curriculum_subjects',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('level', sa.String(16), nullable=False),
        sa.Column('subject_id', sa.Uuid(), nullable=False),
        sa.Column('stream', sa.String(32), nullable=True),
        sa.Column('is_compulsory', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint("level IN ('junior','senior')", name='ck_curriculum_subjects_level_valid'),
        sa.ForeignKeyConstraint(
            ['subject_id'], ['subjects.id'], name='fk_curriculum_subjects_subject_id_subjects', ondelete='CASCADE'
        ),
        sa.PrimaryKeyConstraint('id', name='pk_curriculum_subjects'),
    )
    op.create_index('ix_curriculum_subjects_subject_id', 'curriculum_subjects', ['subject_id'])
    op.create_index('ix_curriculum_subjects_level_stream', 'curriculum_subjects', ['level', 'stream'])

    op.create_table(
        'student_subjects',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('student_id', sa.Uuid(), nullable=False),
        sa.Column('subject_id', sa.Uuid(), nullable=False),
        sa.Column('academic_year_id', sa.Uuid(), nullable=False),
        sa.Column('term_id', sa.Uuid(), nullable=True),
        sa.Column('is_optional', sa.Boolean(), nullable=False),
        sa.Column('enrolled_by', sa.Uuid(), nullable=True),
        sa.Column('enrolled_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ['student_id'], ['students.id'], name='fk_student_subjects_student_id_students', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['subject_id'], ['subjects.id'], name='fk_student_subjects_subject_id_subjects', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['academic_year_id'], ['academic_years.id'],
            name='fk_student_subjects_academic_year_id_academic_years', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['term_id'], ['terms.id'], name='fk_student_subjects_term_id_terms', ondelete='CASCADE'
        ),
        sa.PrimaryKeyConstraint('id', name='pk_student_subjects'),
    )
    op.create_index('ix_student_subjects_student_id', 'student_subjects', ['student_id'])
    op.create_index(
        'uq_student_subjects_term_scope', 'student_subjects',
        ['student_id', 'subject_id', 'academic_year_id', 'term_id'], unique=True,
        postgresql_where=sa.text('term_id IS NOT NULL'), sqlite_where=sa.text('term_id IS NOT NULL'),
    )
    op.create_index(
        'uq_student_subjects_year_scope', 'student_subjects',
        ['student_id', 'subject_id', 'academic_year_id'], unique=True,
        postgresql_where=sa.text('term_id IS NULL'), sqlite_where=sa.text('term_id IS NULL'),
    )

    # Fees
    op.create_table(
        'fee_structures',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(128), nullable=False),
        sa.Column('academic_year_id', sa.Uuid(), nullable=False),
        sa.Column('term_id', sa.Uuid(), nullable=False),
        sa.Column('student_type', sa.String(16), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "student_type IN ('internal','external')", name='ck_fee_structures_student_type_valid'
        ),
        sa.ForeignKeyConstraint(
            ['academic_year_id'], ['academic_years.id'],
            name='fk_fee_structures_academic_year_id_academic_years', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['term_id'], ['terms.id'], name='fk_fee_structures_term_id_terms', ondelete='RESTRICT'
        ),
        sa.PrimaryKeyConstraint('id', name='pk_fee_structures'),
    )
    op.create_index(
        'ix_fee_structures_year_term_type', 'fee_structures', ['academic_year_id', 'term_id', 'student_type']
    )

    op.create_table(
        'fee_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('fee_structure_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(128), nullable=False),
        sa.Column('description', sa.String(255), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_mandatory', sa.Boolean(), nullable=False),
        sa.Column('display_order', sa.Integer(), nullable=False),
        sa.CheckConstraint('amount >= 0', name='ck_fee_items_amount_non_negative'),
        sa.ForeignKeyConstraint(
            ['fee_structure_id'], ['fee_structures.id'],
            name='fk_fee_items_fee_structure_id_fee_structures', ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_fee_items'),
        sa.UniqueConstraint('fee_structure_id', 'name', name='uq_fee_items_structure_name'),
    )
    op.create_index('ix_fee_items_fee_structure_id', 'fee_items', ['fee_structure_id'])

    op.create_table(
        'student_fee_assignments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('student_id', sa.Uuid(), nullable=False),
        sa.Column('fee_structure_id', sa.Uuid(), nullable=False),
        sa.Column('academic_year_id', sa.Uuid(), nullable=False),
        sa.Column('term_id', sa.Uuid(), nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('assigned_by', sa.Uuid(), nullable=True),
        sa.Column('assigned_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('total_amount >= 0', name='ck_student_fee_assignments_total_non_negative'),
        sa.ForeignKeyConstraint(
            ['student_id'], ['students.id'],
            name='fk_student_fee_assignments_student_id_students', ondelete='CASCADE',
        ),
        sa.ForeignKeyConstraint(
            ['fee_structure_id'], ['fee_structures.id'],
            name='fk_student_fee_assignments_fee_structure_id_fee_structures', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['academic_year_id'], ['academic_years.id'],
            name='fk_student_fee_assignments_academic_year_id_academic_years', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['term_id'], ['terms.id'], name='fk_student_fee_assignments_term_id_terms', ondelete='RESTRICT'
        ),
        sa.PrimaryKeyConstraint('id', name='pk_student_fee_assignments'),
        sa.UniqueConstraint(
            'student_id', 'academic_year_id', 'term_id', name='uq_student_fee_assignments_scope'
        ),
    )
    op.create_index('ix_student_fee_assignments_student_id', 'student_fee_assignments', ['student_id'])

    # Invoices and payments
    op.create_table(
        'invoices',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('invoice_number', sa.String(40), nullable=False),
        sa.Column('student_fee_assignment_id', sa.Uuid(), nullable=False),
        sa.Column('student_id', sa.Uuid(), nullable=False),
        sa.Column('academic_year_id', sa.Uuid(), nullable=False),
        sa.Column('term_id', sa.Uuid(), nullable=False),
        sa.Column('invoice_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('amount_paid', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('generated_by', sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('unpaid','partial','paid','cancelled')", name='ck_invoices_status_valid'
        ),
        sa.CheckConstraint('total_amount >= 0', name='ck_invoices_total_non_negative'),
        sa.CheckConstraint('amount_paid >= 0', name='ck_invoices_paid_non_negative'),
        sa.ForeignKeyConstraint(
            ['student_fee_assignment_id'], ['student_fee_assignments.id'],
            name='fk_invoices_student_fee_assignment_id_student_fee_assignments', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(['student_id'], ['students.id'], name='fk_invoices_student_id_students'),
        sa.ForeignKeyConstraint(
            ['academic_year_id'], ['academic_years.id'], name='fk_invoices_academic_year_id_academic_years'
        ),
        sa.ForeignKeyConstraint(['term_id'], ['terms.id'], name='fk_invoices_term_id_terms'),
        sa.PrimaryKeyConstraint('id', name='pk_invoices'),
        sa.UniqueConstraint('invoice_number', name='uq_invoices_invoice_number'),
        sa.UniqueConstraint('student_fee_assignment_id', name='uq_invoices_student_fee_assignment_id'),
    )
    op.create_index('ix_invoices_student_id', 'invoices', ['student_id'])
    op.create_index(
        'ix_invoices_student_year_term', 'invoices', ['student_id', 'academic_year_id', 'term_id']
    )

    op.create_table(
        'invoice_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('invoice_id', sa.Uuid(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('item_name', sa.String(128), nullable=False),
        sa.Column('description', sa.String(255), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.CheckConstraint('total_amount >= 0', name='ck_invoice_items_total_non_negative'),
        sa.ForeignKeyConstraint(
            ['invoice_id'], ['invoices.id'], name='fk_invoice_items_invoice_id_invoices', ondelete='CASCADE'
        ),
        sa.PrimaryKeyConstraint('id', name='pk_invoice_items'),
    )
    op.create_index('ix_invoice_items_invoice_id', 'invoice_items', ['invoice_id'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('invoice_id', sa.Uuid(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('method', sa.String(16), nullable=False),
        sa.Column('reference', sa.String(64), nullable=True),
        sa.Column('recorded_by', sa.Uuid(), nullable=True),
        sa.Column('posted_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint("method IN ('cash','bank','mobile_money')", name='ck_payments_method_valid'),
        sa.CheckConstraint('amount > 0', name='ck_payments_amount_positive'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], name='fk_payments_invoice_id_invoices'),
        sa.PrimaryKeyConstraint('id', name='pk_payments'),
    )
    op.create_index('ix_payments_invoice_id', 'payments', ['invoice_id'])

    op.create_table(
        'invoice_sequences',
        sa.Column('academic_year_id', sa.Uuid(), nullable=False),
        sa.Column('term_id', sa.Uuid(), nullable=False),
        sa.Column('last_value', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ['academic_year_id'], ['academic_years.id'],
            name='fk_invoice_sequences_academic_year_id_academic_years', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['term_id'], ['terms.id'], name='fk_invoice_sequences_term_id_terms', ondelete='RESTRICT'
        ),
        sa.PrimaryKeyConstraint('academic_year_id', 'term_id', name='pk_invoice_sequences'),
    )

    # Clearance
    op.create_table(
        'clearance_types',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(64), nullable=False),
        sa.Column('display_name', sa.String(128), nullable=False),
        sa.Column('minimum_payment_percentage', sa.Numeric(5, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('display_order', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            'minimum_payment_percentage >= 0 AND minimum_payment_percentage <= 100',
            name='ck_clearance_types_threshold_range',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_clearance_types'),
        sa.UniqueConstraint('name', name='uq_clearance_types_name'),
    )

    op.create_table(
        'clearance_requests',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('student_id', sa.Uuid(), nullable=False),
        sa.Column('clearance_type_id', sa.Uuid(), nullable=False),
        sa.Column('academic_year_id', sa.Uuid(), nullable=False),
        sa.Column('term_id', sa.Uuid(), nullable=True),
        sa.Column('total_fees_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('amount_paid', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_percentage', sa.Numeric(5, 2), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('requested_by', sa.Uuid(), nullable=True),
        sa.Column('approver_id', sa.Uuid(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('decided_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending','approved','rejected')", name='ck_clearance_requests_status_valid'
        ),
        sa.ForeignKeyConstraint(
            ['student_id'], ['students.id'], name='fk_clearance_requests_student_id_students', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['clearance_type_id'], ['clearance_types.id'],
            name='fk_clearance_requests_clearance_type_id_clearance_types',
        ),
        sa.ForeignKeyConstraint(
            ['academic_year_id'], ['academic_years.id'],
            name='fk_clearance_requests_academic_year_id_academic_years',
        ),
        sa.ForeignKeyConstraint(['term_id'], ['terms.id'], name='fk_clearance_requests_term_id_terms'),
        sa.PrimaryKeyConstraint('id', name='pk_clearance_requests'),
    )
    op.create_index('ix_clearance_requests_student_id', 'clearance_requests', ['student_id'])
    op.create_index('ix_clearance_requests_status_year', 'clearance_requests', ['status', 'academic_year_id'])


def downgrade():
    for table in (
        'clearance_requests', 'clearance_types', 'invoice_sequences', 'payments', 'invoice_items',
        'invoices', 'student_fee_assignments', 'fee_items', 'fee_structures', 'student_subjects',
        'curriculum_subjects', 'subjects', 'enrollments', 'students', 'terms', 'academic_years',
        'classes', 'profiles', 'users',
    ):
        op.drop_table(table)
