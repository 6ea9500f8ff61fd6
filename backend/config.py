"""Environment-driven settings for the admin console backend."""
import os
from pathlib import Path
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

APP_ENV = (os.environ.get('APP_ENV') or 'development').strip().lower()
IS_PRODUCTION = APP_ENV == 'production'

LOG_LEVEL = (os.environ.get('LOG_LEVEL') or 'INFO').strip().upper()

SUPABASE_URL = (os.environ.get('SUPABASE_URL') or '').strip()
SUPABASE_SERVICE_KEY = (os.environ.get('SUPABASE_SERVICE_KEY') or '').strip()

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

# Base URL the gateway bots call back into (agent webhook)
PUBLIC_BASE_URL = (os.environ.get('PUBLIC_BASE_URL') or '').strip().rstrip('/')

# "soft" keeps the status untouched when the gateway can't be reached,
# "hard" marks the connection as errored
SYNC_FAILURE_POLICY = (os.environ.get('SYNC_FAILURE_POLICY') or 'soft').strip().lower()

# Pause between consecutive connections in a bulk sync (seconds)
SYNC_DELAY_SECONDS = float(os.environ.get('SYNC_DELAY_SECONDS', '0.5'))

# Upper bound on a single connectionState query (seconds)
CONNECTION_STATE_TIMEOUT = float(os.environ.get('CONNECTION_STATE_TIMEOUT', '8.0'))

# Settings / theme cache lifetime (seconds)
SETTINGS_CACHE_TTL = 300
