import os
from dotenv import load_dotenv

load_dotenv()

# Google OAuth (Sheets access on behalf of the dashboard user)
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", "http://localhost:3000/api/auth/google/callback")
GOOGLE_AUTH_URL = os.getenv("GOOGLE_AUTH_URL", "https://accounts.google.com/o/oauth2/v2/auth")
GOOGLE_TOKEN_URL = os.getenv("GOOGLE_TOKEN_URL", "https://oauth2.googleapis.com/token")
GOOGLE_SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"

# Spreadsheet used as the record store
GOOGLE_SHEETS_DOCUMENT_ID = os.getenv("GOOGLE_SHEETS_DOCUMENT_ID", "")
SHEETS_API_BASE_URL = os.getenv("SHEETS_API_BASE_URL", "https://sheets.googleapis.com/v4/spreadsheets")

# Tab names
LEADS_TABLE = os.getenv("LEADS_TABLE", "Leads")
TEMPLATES_TABLE = os.getenv("TEMPLATES_TABLE", "Email_Templates")
CAMPAIGN_STATS_TABLE = os.getenv("CAMPAIGN_STATS_TABLE", "Campaign_Stats")
PROJECTS_TABLE = os.getenv("PROJECTS_TABLE", "Projects")

# Emailable (email verification provider)
# EMILABLE_API_KEY is the old misspelled name, still honoured
EMAILABLE_API_KEY = os.getenv("EMAILABLE_API_KEY", os.getenv("EMILABLE_API_KEY", ""))
EMAILABLE_BASE_URL = os.getenv("EMAILABLE_BASE_URL", "https://api.emailable.com/v1")

# Every outbound HTTP call gets this timeout (seconds) so a hung call can't hold a project lock forever
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "30"))

# Verification retry / pacing
VERIFY_MAX_ATTEMPTS = int(os.getenv("VERIFY_MAX_ATTEMPTS", "3"))
VERIFY_BACKOFF_SECONDS = float(os.getenv("VERIFY_BACKOFF_SECONDS", "2"))  # linear: attempt * this
VERIFY_PACING_SECONDS = float(os.getenv("VERIFY_PACING_SECONDS", "0.05"))  # ~20 req/s, provider allows 25

# Above this many addresses we submit one batch job instead of verifying one by one
BATCH_THRESHOLD = int(os.getenv("BATCH_THRESHOLD", "10"))
BATCH_POLL_INTERVAL = float(os.getenv("BATCH_POLL_INTERVAL", "5"))
BATCH_MAX_POLLS = int(os.getenv("BATCH_MAX_POLLS", "120"))  # 120 * 5s = 10 minutes

# Max per-record error messages returned to the user
ERROR_SAMPLE_LIMIT = int(os.getenv("ERROR_SAMPLE_LIMIT", "10"))

# Campaign stats refresh (workflow webhook that re-pulls Mailgun stats into the sheet)
STATS_WEBHOOK_URL = os.getenv("STATS_WEBHOOK_URL", "")
STATS_REFRESH_DELAY = float(os.getenv("STATS_REFRESH_DELAY", "2"))
STATS_RETRY_DELAY = float(os.getenv("STATS_RETRY_DELAY", "3"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text").lower()  # "text" or "json" (ELK)
LOG_FILE = os.getenv("LOG_FILE") or None
