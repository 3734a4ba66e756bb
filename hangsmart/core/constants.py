"""Global constants for the hangsmart application."""

import string

# Firestore collections
USERS_COLLECTION = "users"
USER_DATA_COLLECTION = "user_data"
GROUPS_COLLECTION = "groups"

# Group codes
GROUP_CODE_LENGTH = 6
GROUP_CODE_ALPHABET = string.digits + string.ascii_uppercase
MAX_CODE_ATTEMPTS = 5

# Optimistic writes
MAX_WRITE_ATTEMPTS = 5

# Readiness
MIN_READY_MEMBERS = 2

# Profiles
DEFAULT_FEATURES = ["basic"]

# Outbound HTTP
DEFAULT_UPSTREAM_TIMEOUT = 20
DEFAULT_RECOMMENDATION_MODEL = "sonar"
RECOMMENDATION_CACHE_SIZE = 512

# Server-Sent Events
EVENTS_HEARTBEAT_SECONDS = 15
