import sqlite3

from billing_server.config import DATABASE_URL

db_path = DATABASE_URL.replace("sqlite+aiosqlite:///", "", 1)

conn = sqlite3.connect(db_path)
cursor = conn.cursor()

print("Tables:")
cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
tables = cursor.fetchall()

for table in tables:
    print(f"\n=== {table[0]} ===")
    cursor.execute(f"PRAGMA table_info({table[0]});")
    for col in cursor.fetchall():
        print(f"{col[1]} ({col[2]})")

print("\nOpen payments per user:")
cursor.execute(
    "SELECT user_id, COUNT(*) FROM payments "
    "WHERE status IN ('pending_payment', 'pending_verification') GROUP BY user_id;"
)
for user_id, count in cursor.fetchall():
    print(f"user {user_id}: {count}")

conn.close()
