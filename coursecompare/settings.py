"""Project settings for coursecompare.

Plain module-level constants; per-site overrides live in YAML profiles
(see :mod:`coursecompare.profiles`).
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------
# Hard cap applied to every extracted value after whitespace collapsing
MAX_FIELD_LENGTH = 200

# Sentinel for a field no extractor could resolve.  Stored verbatim.
NOT_SPECIFIED = "Not specified"

# Tuition plausibility window (inclusive), in currency units
TUITION_MIN = 1_000
TUITION_MAX = 200_000

# ---------------------------------------------------------------------------
# Record store
# ---------------------------------------------------------------------------
STORE_KEY = "courseCompareData"
DEFAULT_MAX_FREE_RECORDS = 3

# Seconds to wait for the mutation gate or a backend round trip
STORE_TIMEOUT = 5.0

STORE_DIR = "~/.coursecompare"

QUOTA_HINT = "Free limit reached! Upgrade to Premium for unlimited saves."

# ---------------------------------------------------------------------------
# Page fetching
# ---------------------------------------------------------------------------
FETCH_TIMEOUT = 30
FETCH_MAX_RETRIES = 3

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
