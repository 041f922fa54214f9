import os
from dotenv import load_dotenv

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_PUBLISHABLE_KEY")
if not SUPABASE_URL:
    raise RuntimeError("Missing SUPABASE_URL")

if not SUPABASE_KEY:
    raise RuntimeError("Missing SUPABASE_SERVICE_ROLE_KEY or SUPABASE_PUBLISHABLE_KEY")

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

PAYCREST_BASE_URL = os.getenv("PAYCREST_BASE_URL", "https://api.paycrest.io/v1")
PAYCREST_API_KEY = os.getenv("PAYCREST_API_KEY")
PAYCREST_API_SECRET = os.getenv("PAYCREST_API_SECRET")
PAYCREST_WEBHOOK_SECRET = os.getenv("PAYCREST_WEBHOOK_SECRET") or PAYCREST_API_SECRET
PAYCREST_RETURN_ADDRESS = os.getenv("PAYCREST_RETURN_ADDRESS", "")

PRETIUM_BASE_URL = os.getenv("PRETIUM_BASE_URL", "https://api.xwift.africa")
PRETIUM_CONSUMER_KEY = os.getenv("PRETIUM_CONSUMER_KEY")
PRETIUM_CHAIN = os.getenv("PRETIUM_CHAIN", "BASE")
# Platform fee kept out of the local amount on Pretium payouts, in percent.
PRETIUM_FEE_PERCENT = float(os.getenv("PRETIUM_FEE_PERCENT", "1"))

TRANSAK_WEBHOOK_SECRET = os.getenv("TRANSAK_WEBHOOK_SECRET")

NEYNAR_API_KEY = os.getenv("NEYNAR_API_KEY")
NEYNAR_BASE_URL = os.getenv("NEYNAR_BASE_URL", "https://api.neynar.com/v2")

DASHBOARD_JWT_SECRET = os.getenv("DASHBOARD_JWT_SECRET", "dashboard-dev")
DASHBOARD_JWT_ALGORITHM = "HS256"
DASHBOARD_SESSION_HOURS = int(os.getenv("DASHBOARD_SESSION_HOURS", "24"))
DASHBOARD_ADMIN_USERNAME = os.getenv("DASHBOARD_ADMIN_USERNAME")
DASHBOARD_ADMIN_PASSWORD = os.getenv("DASHBOARD_ADMIN_PASSWORD")
DASHBOARD_ADMIN_PASSWORD_HASH = os.getenv("DASHBOARD_ADMIN_PASSWORD_HASH")

POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "5"))
MAX_POLL_DURATION_SECONDS = float(os.getenv("MAX_POLL_DURATION_SECONDS", "300"))
SERVER_POLL_BASE_DELAY_SECONDS = float(os.getenv("SERVER_POLL_BASE_DELAY_SECONDS", "3"))
SERVER_POLL_MAX_DELAY_SECONDS = float(os.getenv("SERVER_POLL_MAX_DELAY_SECONDS", "30"))
SERVER_POLL_BACKOFF_FACTOR = float(os.getenv("SERVER_POLL_BACKOFF_FACTOR", "1.4"))
SERVER_POLL_MAX_ATTEMPTS = int(os.getenv("SERVER_POLL_MAX_ATTEMPTS", "20"))
SERVER_POLL_TIMEOUT_SECONDS = float(os.getenv("SERVER_POLL_TIMEOUT_SECONDS", "600"))

SSE_KEEPALIVE_SECONDS = float(os.getenv("SSE_KEEPALIVE_SECONDS", "30"))
SSE_QUEUE_SIZE = int(os.getenv("SSE_QUEUE_SIZE", "100"))

# Farcaster Mini-App manifest
APP_URL = os.getenv("APP_URL", "https://app.minisend.xyz")
PRETIUM_CALLBACK_URL = os.getenv("PRETIUM_CALLBACK_URL", f"{APP_URL}/api/pretium/webhook")
APP_NAME = os.getenv("APP_NAME", "Minisend")
APP_ICON_URL = os.getenv("APP_ICON_URL", f"{APP_URL}/logo.svg")
APP_IMAGE_URL = os.getenv("APP_IMAGE_URL", APP_ICON_URL)
APP_SPLASH_IMAGE_URL = os.getenv("APP_SPLASH_IMAGE_URL", APP_ICON_URL)
APP_SPLASH_BACKGROUND_COLOR = os.getenv("APP_SPLASH_BACKGROUND_COLOR", "#1D4ED8")
APP_BUTTON_TITLE = os.getenv("APP_BUTTON_TITLE", "Open Minisend")
APP_SUBTITLE = os.getenv("APP_SUBTITLE", "USDC to KES and NGN")
APP_DESCRIPTION = os.getenv("APP_DESCRIPTION", "Convert USDC to KES or NGN instantly")
APP_TAGLINE = os.getenv("APP_TAGLINE", "Cash out crypto instantly")
APP_PRIMARY_CATEGORY = os.getenv("APP_PRIMARY_CATEGORY", "finance")
APP_KEYWORDS = os.getenv("APP_KEYWORDS", "usdc,mpesa,kenya,crypto,finance")
APP_SCREENSHOT_URLS = os.getenv("APP_SCREENSHOT_URLS", f"{APP_URL}/screenshot.jpeg")
FARCASTER_HEADER = os.getenv("FARCASTER_HEADER", "")
FARCASTER_PAYLOAD = os.getenv("FARCASTER_PAYLOAD", "")
FARCASTER_SIGNATURE = os.getenv("FARCASTER_SIGNATURE", "")
