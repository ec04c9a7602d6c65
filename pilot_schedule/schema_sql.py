SCHEMA_SQL = '''
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY,
    username TEXT UNIQUE,
    email TEXT UNIQUE,
    phone TEXT,
    password_hash TEXT NOT NULL,
    password_salt TEXT NOT NULL,
    first_name TEXT NOT NULL DEFAULT '',
    last_name TEXT NOT NULL DEFAULT '',
    role TEXT NOT NULL CHECK (role IN ('manager','pilot','viewer')),
    is_active INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    CHECK (username IS NOT NULL OR email IS NOT NULL)
);

CREATE TABLE IF NOT EXISTS user_session (
    token TEXT PRIMARY KEY,
    user_id INTEGER NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    expires_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS monthly_schedules (
    id INTEGER PRIMARY KEY,
    month INTEGER NOT NULL CHECK (month BETWEEN 1 AND 12),
    year INTEGER NOT NULL CHECK (year > 0),
    shifts_per_day INTEGER NOT NULL CHECK (shifts_per_day > 0),
    is_published INTEGER NOT NULL DEFAULT 0 CHECK (is_published IN (0,1)),
    version INTEGER NOT NULL DEFAULT 0 CHECK (version >= 0),
    created_by INTEGER,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY (created_by) REFERENCES users(id) ON DELETE SET NULL,
    UNIQUE(month, year)
);

CREATE TABLE IF NOT EXISTS shift_definitions (
    id INTEGER PRIMARY KEY,
    schedule_id INTEGER NOT NULL,
    shift_letter TEXT NOT NULL,
    start_time TEXT NOT NULL,
    duration_hours INTEGER NOT NULL DEFAULT 8 CHECK (duration_hours > 0),
    pilots_required INTEGER NOT NULL DEFAULT 2 CHECK (pilots_required >= 0),
    FOREIGN KEY (schedule_id) REFERENCES monthly_schedules(id) ON DELETE CASCADE,
    UNIQUE(schedule_id, shift_letter)
);

-- Materialized occurrence of a shift definition on a date, created on first assignment
CREATE TABLE IF NOT EXISTS daily_shifts (
    id INTEGER PRIMARY KEY,
    schedule_id INTEGER NOT NULL,
    shift_definition_id INTEGER NOT NULL,
    shift_date TEXT NOT NULL,
    FOREIGN KEY (schedule_id) REFERENCES monthly_schedules(id) ON DELETE CASCADE,
    FOREIGN KEY (shift_definition_id) REFERENCES shift_definitions(id) ON DELETE CASCADE,
    UNIQUE(schedule_id, shift_definition_id, shift_date)
);

-- Published assignments (visible to pilots)
CREATE TABLE IF NOT EXISTS shift_assignments (
    id INTEGER PRIMARY KEY,
    daily_shift_id INTEGER NOT NULL,
    pilot_id INTEGER NOT NULL,
    assignment_order INTEGER NOT NULL CHECK (assignment_order >= 0),
    assigned_by INTEGER,
    assigned_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY (daily_shift_id) REFERENCES daily_shifts(id) ON DELETE CASCADE,
    FOREIGN KEY (pilot_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY (assigned_by) REFERENCES users(id) ON DELETE SET NULL,
    UNIQUE(daily_shift_id, assignment_order)
);

-- Working copy edited by managers
CREATE TABLE IF NOT EXISTS draft_shift_assignments (
    id INTEGER PRIMARY KEY,
    daily_shift_id INTEGER NOT NULL,
    pilot_id INTEGER NOT NULL,
    assignment_order INTEGER NOT NULL CHECK (assignment_order >= 0),
    assigned_by INTEGER,
    assigned_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY (daily_shift_id) REFERENCES daily_shifts(id) ON DELETE CASCADE,
    FOREIGN KEY (pilot_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY (assigned_by) REFERENCES users(id) ON DELETE SET NULL,
    UNIQUE(daily_shift_id, assignment_order)
);

CREATE TABLE IF NOT EXISTS training_days (
    id INTEGER PRIMARY KEY,
    schedule_id INTEGER NOT NULL,
    training_date TEXT NOT NULL,
    FOREIGN KEY (schedule_id) REFERENCES monthly_schedules(id) ON DELETE CASCADE,
    UNIQUE(schedule_id, training_date)
);

CREATE TABLE IF NOT EXISTS training_assignments (
    id INTEGER PRIMARY KEY,
    training_day_id INTEGER NOT NULL,
    pilot_id INTEGER NOT NULL,
    assignment_order INTEGER NOT NULL CHECK (assignment_order >= 0),
    assigned_by INTEGER,
    assigned_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY (training_day_id) REFERENCES training_days(id) ON DELETE CASCADE,
    FOREIGN KEY (pilot_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY (assigned_by) REFERENCES users(id) ON DELETE SET NULL,
    UNIQUE(training_day_id, assignment_order)
);

CREATE TABLE IF NOT EXISTS draft_training_assignments (
    id INTEGER PRIMARY KEY,
    training_day_id INTEGER NOT NULL,
    pilot_id INTEGER NOT NULL,
    assignment_order INTEGER NOT NULL CHECK (assignment_order >= 0),
    assigned_by INTEGER,
    assigned_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY (training_day_id) REFERENCES training_days(id) ON DELETE CASCADE,
    FOREIGN KEY (pilot_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY (assigned_by) REFERENCES users(id) ON DELETE SET NULL,
    UNIQUE(training_day_id, assignment_order)
);

CREATE TABLE IF NOT EXISTS push_subscriptions (
    id INTEGER PRIMARY KEY,
    user_id INTEGER NOT NULL,
    endpoint TEXT NOT NULL UNIQUE,
    p256dh TEXT NOT NULL,
    auth TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS notification_preferences (
    id INTEGER PRIMARY KEY,
    user_id INTEGER NOT NULL,
    category TEXT NOT NULL CHECK (category IN ('new_schedule_published','schedule_changes','shift_reminders')),
    enabled INTEGER NOT NULL DEFAULT 1,
    email_enabled INTEGER NOT NULL DEFAULT 1,
    inapp_enabled INTEGER NOT NULL DEFAULT 1,
    sms_enabled INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
    UNIQUE(user_id, category)
);

CREATE TABLE IF NOT EXISTS reminder_timings (
    user_id INTEGER PRIMARY KEY,
    hours_24 INTEGER NOT NULL DEFAULT 1,
    hours_2 INTEGER NOT NULL DEFAULT 1,
    minutes_30 INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_user_session_user ON user_session(user_id);
CREATE INDEX IF NOT EXISTS idx_shift_def_schedule ON shift_definitions(schedule_id);
CREATE INDEX IF NOT EXISTS idx_daily_shift_schedule ON daily_shifts(schedule_id);
CREATE INDEX IF NOT EXISTS idx_training_day_schedule ON training_days(schedule_id);
CREATE INDEX IF NOT EXISTS idx_shift_asg_pilot ON shift_assignments(pilot_id);
CREATE INDEX IF NOT EXISTS idx_training_asg_pilot ON training_assignments(pilot_id);
CREATE INDEX IF NOT EXISTS idx_push_sub_user ON push_subscriptions(user_id);

-- Pilot-visible view: published shift assignments of published schedules only
CREATE VIEW IF NOT EXISTS v_published_shift_assignments AS
SELECT
  ds.schedule_id,
  ds.shift_date,
  ds.shift_definition_id,
  sd.shift_letter,
  sa.assignment_order,
  sa.pilot_id,
  u.first_name,
  u.last_name
FROM daily_shifts ds
JOIN shift_assignments sa ON sa.daily_shift_id = ds.id
JOIN shift_definitions sd ON sd.id = ds.shift_definition_id
JOIN users u ON u.id = sa.pilot_id
JOIN monthly_schedules ms ON ms.id = ds.schedule_id
WHERE ms.is_published = 1;
''';
