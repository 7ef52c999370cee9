"""Follow-up engine constants."""

# Business hours defaults (sequence conditions override these)
BUSINESS_HOURS_START = "09:00"
BUSINESS_HOURS_END = "18:00"
BUSINESS_DAYS = [1, 2, 3, 4, 5]  # 0 = Sunday

# Message log text limits
MAX_ERROR_MESSAGE_LENGTH = 500
MAX_RESPONSE_TEXT_LENGTH = 2000

# Execution list pagination
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200
