from settings import settings
import psycopg

DDL = '''
CREATE TABLE IF NOT EXISTS users (
    id BIGSERIAL PRIMARY KEY,
    callsign TEXT NOT NULL UNIQUE,
    name TEXT,
    active BOOLEAN NOT NULL DEFAULT TRUE,
    date_joined DATE NOT NULL
);

CREATE TABLE IF NOT EXISTS exercises (
    id BIGSERIAL PRIMARY KEY,
    date DATE NOT NULL,
    type TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    UNIQUE (date, type, name)
);

CREATE TABLE IF NOT EXISTS events (
    id BIGSERIAL PRIMARY KEY,
    user_id BIGINT NOT NULL REFERENCES users (id),
    exercise_id BIGINT NOT NULL REFERENCES exercises (id),
    latitude DOUBLE PRECISION,
    longitude DOUBLE PRECISION,
    feedback_count INTEGER NOT NULL DEFAULT 0,
    feedback_text TEXT,
    context TEXT,
    UNIQUE (user_id, exercise_id)
);

CREATE INDEX IF NOT EXISTS idx_exercises_date ON exercises (date DESC);
'''

print('Connecting to', settings.db_url)
with psycopg.connect(settings.db_url, connect_timeout=5) as conn:
    with conn.cursor() as cur:
        cur.execute(DDL)
    conn.commit()
print('DDL applied')
