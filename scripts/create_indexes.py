import psycopg2
from dotenv import load_dotenv
import os

load_dotenv()

# Adds the shift/zone indexes to an existing PostgreSQL database
# (new databases get them from SQLModel.metadata.create_all at startup)

# Connect to your database
conn = psycopg2.connect(
    dbname=os.getenv("DB_NAME"),
    user=os.getenv("DB_USER"),
    password=os.getenv("DB_PASSWORD"),
    host=os.getenv("DB_HOST"),
    port=os.getenv("DB_PORT", "5432"),
)

# Create cursor
cur = conn.cursor()

# Create indexes
index_commands = [
    "CREATE INDEX IF NOT EXISTS ix_shift_worker_id ON shift (worker_id);",
    "CREATE INDEX IF NOT EXISTS ix_shift_status ON shift (status);",
    "CREATE INDEX IF NOT EXISTS ix_shift_clock_in_time ON shift (clock_in_time);",
    "CREATE INDEX IF NOT EXISTS ix_shift_worker_id_clock_in_time ON shift (worker_id, clock_in_time);",
    # At most one open shift per worker
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_shift_worker_open ON shift (worker_id) WHERE status = 'CLOCKED_IN';",
    "CREATE INDEX IF NOT EXISTS ix_zone_manager_id_is_active ON zone (manager_id, is_active);",
    "CREATE INDEX IF NOT EXISTS ix_zone_is_active ON zone (is_active);",
]

for cmd in index_commands:
    print(f"Executing: {cmd}")
    cur.execute(cmd)

# Commit changes
conn.commit()

# Close connection
cur.close()
conn.close()

print("Indexes created successfully!")
