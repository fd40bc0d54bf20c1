"""Well-known storage slot names."""

QUEUE_STORAGE_KEY = "tagpipe_event_queue"
CONSENT_STORAGE_KEY = "tagpipe_consent_status"
USER_DATA_KEY = "tagpipe_user_data"
