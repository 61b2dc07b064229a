# votechain/config.py
# Central place for settings and constants
import os

from dotenv import load_dotenv

load_dotenv()

# --- Storage ---
# "mongo" for deployments, "memory" for local development (optionally persisted to DUMMY_DB_PATH)
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "mongo")
MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "votechain")
# Multi-document transactions need a replica set
MONGO_TRANSACTIONS = os.getenv("MONGO_TRANSACTIONS", "false").lower() in ("1", "true", "yes")
DUMMY_DB_PATH = os.getenv("DUMMY_DB_PATH", "")

PROFILES_COLLECTION_NAME = "profiles"
ELECTIONS_COLLECTION_NAME = "polls"
CANDIDATES_COLLECTION_NAME = "candidates"
VOTES_COLLECTION_NAME = "votes"
ADMIN_REQUESTS_COLLECTION_NAME = "admin_requests"

# --- Security & JWT ---
# In production, use secure, environment-variable-based secrets
SECRET_KEY = os.getenv("SECRET_KEY", "a_very_secret_key_for_dev_only")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# Wallet granted super-admin when it reconnects with its own session; unset means no super admin
SUPER_ADMIN_ADDRESS = os.getenv("SUPER_ADMIN_ADDRESS", "")

# --- Face capture encryption (admin requests) ---
FACE_ENCRYPTION_KEY = os.getenv("FACE_ENCRYPTION_KEY")
FACE_KEY_FILE = os.getenv("FACE_KEY_FILE", "data/face.key")

# --- Uploads ---
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads/candidate_photos")
UPLOAD_URL_PREFIX = "/uploads/candidate_photos"

# --- Web ---
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if origin.strip()
]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# --- Poll rules ---
MIN_CANDIDATES = 2
MAX_CANDIDATES = 10
COLLEGE_EMAIL_DOMAIN = ".edu"
