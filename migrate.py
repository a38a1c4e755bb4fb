# migrate.py
import database

if __name__ == "__main__":
    print(f"🚀 Creating store schema in {database.DB_PATH}...")
    database.init_db()
    print("✅ Migration complete.")
