# etl/config.py
import os

from api.config import DB

# maximum characters per stored chunk
CHUNK_MAX_CHARS = int(os.getenv("CHUNK_MAX_CHARS", "1200"))

SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.sql")
