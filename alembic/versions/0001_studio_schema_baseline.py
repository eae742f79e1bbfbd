from alembic import op

revision = "0001_studio_schema_baseline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("""
CREATE TABLE IF NOT EXISTS organizations (
	id SERIAL NOT NULL,
	name VARCHAR(255) NOT NULL,
	industry VARCHAR(30) DEFAULT 'dance' NOT NULL,
	security_pin VARCHAR(4),
	created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT CURRENT_TIMESTAMP,
	PRIMARY KEY (id),
	CONSTRAINT ck_organizations_industry CHECK (industry IN ('dance', 'fitness', 'beauty', 'workshop'))
);
    """)

    op.execute("""
CREATE TABLE IF NOT EXISTS branches (
	id SERIAL NOT NULL,
	organization_id INTEGER NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
	name VARCHAR(255) NOT NULL,
	address TEXT,
	timezone VARCHAR(80),
	created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT CURRENT_TIMESTAMP,
	PRIMARY KEY (id)
);
CREATE INDEX IF NOT EXISTS idx_branches_organization_id ON branches(organization_id);
    """)

    op.execute("""
CREATE TABLE IF NOT EXISTS auth_users (
	id SERIAL NOT NULL,
	email VARCHAR(255) NOT NULL,
	password_hash VARCHAR(255),
	user_metadata JSON,
	invited_at TIMESTAMP WITHOUT TIME ZONE,
	confirmed_at TIMESTAMP WITHOUT TIME ZONE,
	created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT CURRENT_TIMESTAMP,
	PRIMARY KEY (id),
	UNIQUE (email)
);
    """)

    op.execute("""
CREATE TABLE IF NOT EXISTS profiles (
	id INTEGER NOT NULL REFERENCES auth_users(id) ON DELETE CASCADE,
	organization_id INTEGER REFERENCES organizations(id) ON DELETE CASCADE,
	assigned_branch_id INTEGER REFERENCES branches(id) ON DELETE SET NULL,
	role VARCHAR(20) DEFAULT 'staff' NOT NULL,
	full_name VARCHAR(255),
	email VARCHAR(255),
	phone VARCHAR(50),
	specialty VARCHAR(255),
	base_salary NUMERIC(12, 2) DEFAULT 0,
	commission_percentage NUMERIC(5, 2) DEFAULT 0,
	created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT CURRENT_TIMESTAMP,
	PRIMARY KEY (id),
	CONSTRAINT ck_profiles_role CHECK (role IN ('super_admin', 'owner', 'staff'))
);
CREATE INDEX IF NOT EXISTS idx_profiles_organization_id ON profiles(organization_id);
    """)

    op.execute("""
CREATE TABLE IF NOT EXISTS professionals (
	id SERIAL NOT NULL,
	organization_id INTEGER NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
	full_name VARCHAR(255) NOT NULL,
	email VARCHAR(255),
	phone VARCHAR(50),
	specialty VARCHAR(255),
	base_salary NUMERIC(12, 2) DEFAULT 0,
	commission_percentage NUMERIC(5, 2) DEFAULT 0,
	created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT CURRENT_TIMESTAMP,
	PRIMARY KEY (id)
);
CREATE INDEX IF NOT EXISTS idx_professionals_organization_id ON professionals(organization_id);
    """)

    op.execute("""
CREATE TABLE IF NOT EXISTS branch_staff (
	id SERIAL NOT NULL,
	organization_id INTEGER NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
	branch_id INTEGER NOT NULL REFERENCES branches(id) ON DELETE CASCADE,
	profile_id INTEGER REFERENCES profiles(id) ON DELETE CASCADE,
	professional_id INTEGER REFERENCES professionals(id) ON DELETE CASCADE,
	PRIMARY KEY (id),
	CONSTRAINT ck_branch_staff_one_person CHECK (
		(profile_id IS NOT NULL AND professional_id IS NULL) OR
		(profile_id IS NULL AND professional_id IS NOT NULL)
	),
	CONSTRAINT branch_staff_branch_id_profile_id_key UNIQUE (branch_id, profile_id),
	CONSTRAINT branch_staff_branch_id_professional_id_key UNIQUE (branch_id, professional_id)
);
CREATE INDEX IF NOT EXISTS idx_branch_staff_branch_id ON branch_staff(branch_id);
CREATE INDEX IF NOT EXISTS idx_branch_staff_profile_id ON branch_staff(profile_id);
CREATE INDEX IF NOT EXISTS idx_branch_staff_professional_id ON branch_staff(professional_id);
    """)

    op.execute("""
CREATE TABLE IF NOT EXISTS staff_schedules (
	id SERIAL NOT NULL,
	organization_id INTEGER NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
	profile_id INTEGER NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
	branch_id INTEGER NOT NULL REFERENCES branches(id) ON DELETE CASCADE,
	day_of_week INTEGER NOT NULL,
	start_time TIME WITHOUT TIME ZONE NOT NULL,
	end_time TIME WITHOUT TIME ZONE NOT NULL,
	PRIMARY KEY (id),
	CONSTRAINT ck_staff_schedules_day CHECK (day_of_week BETWEEN 0 AND 6)
);
CREATE INDEX IF NOT EXISTS idx_staff_schedules_profile_day_branch
	ON staff_schedules(profile_id, day_of_week, branch_id);
    """)

    op.execute("""
CREATE TABLE IF NOT EXISTS students (
	id SERIAL NOT NULL,
	organization_id INTEGER NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
	branch_id INTEGER REFERENCES branches(id) ON DELETE SET NULL,
	first_name VARCHAR(120) NOT NULL,
	last_name VARCHAR(120) DEFAULT '' NOT NULL,
	email VARCHAR(255),
	phone VARCHAR(50),
	notes TEXT,
	created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT CURRENT_TIMESTAMP,
	PRIMARY KEY (id)
);
CREATE INDEX IF NOT EXISTS idx_students_organization_id ON students(organization_id);
CREATE INDEX IF NOT EXISTS idx_students_org_created ON students(organization_id, created_at);
    """)
    op.execute("""
CREATE TABLE IF NOT EXISTS teacher_reviews (
	id SERIAL NOT NULL,
	organization_id INTEGER NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
	teacher_id INTEGER NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
	student_id INTEGER REFERENCES students(id) ON DELETE SET NULL,
	rating INTEGER NOT NULL,
	comment TEXT,
	created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT CURRENT_TIMESTAMP,
	PRIMARY KEY (id),
	CONSTRAINT ck_teacher_reviews_rating CHECK (rating BETWEEN 1 AND 5)
);
CREATE INDEX IF NOT EXISTS idx_teacher_reviews_teacher_created ON teacher_reviews(teacher_id, created_at);
    """)


    op.execute("""
CREATE TABLE IF NOT EXISTS services (
	id SERIAL NOT NULL,
	organization_id INTEGER NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
	name VARCHAR(255) NOT NULL,
	description TEXT,
	price NUMERIC(12, 2) DEFAULT 0 NOT NULL,
	is_active BOOLEAN DEFAULT 'true',
	PRIMARY KEY (id)
);
CREATE INDEX IF NOT EXISTS idx_services_organization_id ON services(organization_id);
    """)

    op.execute("""
CREATE TABLE IF NOT EXISTS plans (
	id SERIAL NOT NULL,
	organization_id INTEGER NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
	name VARCHAR(255) NOT NULL,
	price NUMERIC(12, 2) DEFAULT 0 NOT NULL,
	duration_days INTEGER DEFAULT 30 NOT NULL,
	class_limit INTEGER,
	service_id INTEGER REFERENCES services(id) ON DELETE SET NULL,
	is_active BOOLEAN DEFAULT 'true',
	PRIMARY KEY (id),
	CONSTRAINT ck_plans_duration_days CHECK (duration_days > 0)
);
CREATE INDEX IF NOT EXISTS idx_plans_organization_id ON plans(organization_id);
    """)

    op.execute("""
CREATE TABLE IF NOT EXISTS plan_services_access (
	plan_id INTEGER NOT NULL REFERENCES plans(id) ON DELETE CASCADE,
	service_id INTEGER NOT NULL REFERENCES services(id) ON DELETE CASCADE,
	PRIMARY KEY (plan_id, service_id)
);
    """)

    op.execute("""
CREATE TABLE IF NOT EXISTS memberships (
	id SERIAL NOT NULL,
	organization_id INTEGER NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
	student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
	plan_id INTEGER NOT NULL REFERENCES plans(id) ON DELETE RESTRICT,
	start_date DATE NOT NULL,
	end_date DATE NOT NULL,
	price_paid NUMERIC(12, 2),
	status VARCHAR(20) DEFAULT 'active' NOT NULL,
	created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT CURRENT_TIMESTAMP,
	PRIMARY KEY (id),
	CONSTRAINT ck_memberships_status CHECK (status IN ('active', 'expired', 'cancelled'))
);
CREATE INDEX IF NOT EXISTS idx_memberships_student_status ON memberships(student_id, status);
CREATE INDEX IF NOT EXISTS idx_memberships_status_end_date ON memberships(status, end_date);
    """)

    op.execute("""
CREATE TABLE IF NOT EXISTS appointments (
	id SERIAL NOT NULL,
	organization_id INTEGER NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
	branch_id INTEGER REFERENCES branches(id) ON DELETE SET NULL,
	service_id INTEGER REFERENCES services(id) ON DELETE SET NULL,
	profile_id INTEGER REFERENCES profiles(id) ON DELETE SET NULL,
	professional_id INTEGER REFERENCES professionals(id) ON DELETE SET NULL,
	start_time TIMESTAMP WITHOUT TIME ZONE NOT NULL,
	end_time TIMESTAMP WITHOUT TIME ZONE,
	is_private_class BOOLEAN DEFAULT 'false',
	price_at_booking NUMERIC(12, 2) DEFAULT 0,
	status VARCHAR(20) DEFAULT 'scheduled' NOT NULL,
	created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT CURRENT_TIMESTAMP,
	PRIMARY KEY (id),
	CONSTRAINT ck_appointments_single_teacher CHECK (NOT (profile_id IS NOT NULL AND professional_id IS NOT NULL)),
	CONSTRAINT ck_appointments_status CHECK (status IN ('scheduled', 'completed', 'cancelled'))
);
CREATE INDEX IF NOT EXISTS idx_appointments_org_start ON appointments(organization_id, start_time);
CREATE INDEX IF NOT EXISTS idx_appointments_profile_start ON appointments(profile_id, start_time);
CREATE INDEX IF NOT EXISTS idx_appointments_professional_start ON appointments(professional_id, start_time);
    """)

    op.execute("""
CREATE TABLE IF NOT EXISTS appointment_attendees (
	id SERIAL NOT NULL,
	appointment_id INTEGER NOT NULL REFERENCES appointments(id) ON DELETE CASCADE,
	student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
	PRIMARY KEY (id),
	CONSTRAINT appointment_attendees_appointment_id_student_id_key UNIQUE (appointment_id, student_id)
);
CREATE INDEX IF NOT EXISTS idx_appointment_attendees_student_id ON appointment_attendees(student_id);
    """)

    op.execute("""
CREATE TABLE IF NOT EXISTS attendance_records (
	id SERIAL NOT NULL,
	organization_id INTEGER NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
	appointment_id INTEGER NOT NULL REFERENCES appointments(id) ON DELETE CASCADE,
	student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
	status VARCHAR(20) DEFAULT 'present' NOT NULL,
	marked_by INTEGER REFERENCES profiles(id) ON DELETE SET NULL,
	created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT CURRENT_TIMESTAMP,
	updated_at TIMESTAMP WITHOUT TIME ZONE DEFAULT CURRENT_TIMESTAMP,
	PRIMARY KEY (id),
	CONSTRAINT attendance_records_appointment_id_student_id_key UNIQUE (appointment_id, student_id),
	CONSTRAINT ck_attendance_records_status CHECK (status IN ('present', 'absent', 'late'))
);
    """)

    op.execute("""
CREATE TABLE IF NOT EXISTS transactions (
	id SERIAL NOT NULL,
	organization_id INTEGER NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
	branch_id INTEGER REFERENCES branches(id) ON DELETE SET NULL,
	student_id INTEGER REFERENCES students(id) ON DELETE SET NULL,
	amount NUMERIC(12, 2) NOT NULL,
	payment_method VARCHAR(20) DEFAULT 'cash' NOT NULL,
	concept TEXT,
	created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT CURRENT_TIMESTAMP,
	PRIMARY KEY (id),
	CONSTRAINT ck_transactions_payment_method CHECK (payment_method IN ('cash', 'card', 'transfer'))
);
CREATE INDEX IF NOT EXISTS idx_transactions_org_created ON transactions(organization_id, created_at);
CREATE INDEX IF NOT EXISTS idx_transactions_student_id ON transactions(student_id);
    """)

    op.execute("""
CREATE TABLE IF NOT EXISTS expenses (
	id SERIAL NOT NULL,
	organization_id INTEGER NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
	amount NUMERIC(12, 2) NOT NULL,
	category VARCHAR(80) NOT NULL,
	description TEXT,
	payment_method VARCHAR(20) DEFAULT 'cash' NOT NULL,
	created_by INTEGER REFERENCES profiles(id) ON DELETE SET NULL,
	created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT CURRENT_TIMESTAMP,
	PRIMARY KEY (id)
);
CREATE INDEX IF NOT EXISTS idx_expenses_org_created ON expenses(organization_id, created_at);
    """)

    op.execute("""
CREATE TABLE IF NOT EXISTS organization_invitations (
	id SERIAL NOT NULL,
	organization_id INTEGER NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
	email VARCHAR(255) NOT NULL,
	role VARCHAR(20) DEFAULT 'staff' NOT NULL,
	status VARCHAR(20) DEFAULT 'pending' NOT NULL,
	created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT CURRENT_TIMESTAMP,
	PRIMARY KEY (id)
);
CREATE INDEX IF NOT EXISTS idx_organization_invitations_org_email
	ON organization_invitations(organization_id, email);
    """)


def downgrade() -> None:
    return
