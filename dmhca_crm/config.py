"""
Configuration and shared helpers
"""

import os
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Load .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB (activity log only, leads and users live in the CRM backend)
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'dmhca_gateway')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

print(f"[CONFIG] Using database: {DB_NAME}")

# CRM backend
CRM_API_URL = os.environ.get('CRM_API_URL', 'https://dmhcacrm.com/api/v1').rstrip('/')
CRM_API_TIMEOUT = float(os.environ.get('CRM_API_TIMEOUT', '30'))
CRM_RETRY_ATTEMPTS = int(os.environ.get('CRM_RETRY_ATTEMPTS', '3'))
CRM_RETRY_DELAY = float(os.environ.get('CRM_RETRY_DELAY', '1'))

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')


# ==================== HELPERS ====================

def now_iso() -> str:
    """Current UTC time in ISO format"""
    return datetime.now(timezone.utc).isoformat()
