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

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'zrs_crm')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')
COMPANY_NAME = os.environ.get('COMPANY_NAME', 'ZRS Cars Trading')

# E-signature service
ESIGN_BASE_URL = os.environ.get('ESIGN_BASE_URL', 'https://demo.docusign.net/restapi')
ESIGN_ACCOUNT_ID = os.environ.get('ESIGN_ACCOUNT_ID', '')
ESIGN_ACCESS_TOKEN = os.environ.get('ESIGN_ACCESS_TOKEN', '')
ESIGN_PURCHASE_TEMPLATE_ID = os.environ.get('ESIGN_PURCHASE_TEMPLATE_ID', '')

# Email templates (SendGrid dynamic templates)
SENDGRID_SETTLEMENT_TEMPLATE_ID = os.environ.get('SENDGRID_SETTLEMENT_TEMPLATE_ID', '')
SENDGRID_INVOICE_TEMPLATE_ID = os.environ.get('SENDGRID_INVOICE_TEMPLATE_ID', '')
SENDGRID_REMINDER_TEMPLATE_ID = os.environ.get('SENDGRID_REMINDER_TEMPLATE_ID', '')

# Bounded wait for every outbound collaborator call
COLLABORATOR_TIMEOUT_SECONDS = float(os.environ.get('COLLABORATOR_TIMEOUT_SECONDS', '30'))

SCHEDULER_TIMEZONE = os.environ.get('SCHEDULER_TIMEZONE', 'Asia/Dubai')


# ==================== HELPERS ====================

def now_iso() -> str:
    """Current UTC time as ISO string"""
    return datetime.now(timezone.utc).isoformat()
