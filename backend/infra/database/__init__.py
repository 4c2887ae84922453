# Database module
from .connection import engine, init_db, create_db_engine, db_lock, DB_PATH, DATABASE_URL
