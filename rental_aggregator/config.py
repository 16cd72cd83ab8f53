import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y")


SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Listings not re-observed within this many days are flagged inactive by the sweep
INACTIVE_THRESHOLD_DAYS = int(os.getenv("RENTALS_INACTIVE_DAYS", "7"))
MAX_IMAGES = int(os.getenv("RENTALS_MAX_IMAGES", "10"))

# What to do when a raw record has neither a native id nor a url/title to hash:
#   fail   -> skip the record (UnderivableIdError)
#   random -> generated-<ms>-<random>, never deduplicates across runs
ID_POLICY_FAIL = "fail"
ID_POLICY_RANDOM = "random"
ID_FALLBACK_POLICY = os.getenv("RENTALS_ID_FALLBACK", ID_POLICY_FAIL).strip().lower()

REACTIVATE_ON_UPDATE = _env_bool("RENTALS_REACTIVATE_ON_UPDATE", True)
DETAIL_FETCH_DELAY_S = float(os.getenv("RENTALS_DETAIL_DELAY_S", "1.5"))

if ID_FALLBACK_POLICY not in (ID_POLICY_FAIL, ID_POLICY_RANDOM):
    raise EnvironmentError(
        f"Invalid RENTALS_ID_FALLBACK={ID_FALLBACK_POLICY!r}. "
        f"Use {ID_POLICY_FAIL!r} or {ID_POLICY_RANDOM!r}."
    )
