import os
import logging
from supabase import create_client, Client
from dotenv import load_dotenv

load_dotenv()
logger = logging.getLogger(__name__)

_client: Client | None = None


def get_supabase() -> Client | None:
    """Returns the shared Supabase client, or None when credentials are absent."""
    global _client
    if _client is None:
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_SECRET_KEY")
        if not (url and key):
            logger.info("SUPABASE_URL/SUPABASE_SECRET_KEY not set; persistence disabled")
            return None
        _client = create_client(url, key)
    return _client
