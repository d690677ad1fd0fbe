"""Application-wide constants.

This module centralizes the Instagram platform constants and the limits
applied to persisted instances so there is a single source of truth.
"""

# =============================================================================
# Instagram Platform
# =============================================================================

# Graph API base URL and version used for outbound calls
INSTAGRAM_API_URL = "https://graph.instagram.com"
INSTAGRAM_API_VERSION = "v24.0"

# Instagram Business Login endpoints
INSTAGRAM_OAUTH_URL = "https://api.instagram.com/oauth/authorize"
INSTAGRAM_TOKEN_URL = "https://api.instagram.com/oauth/access_token"

# Permissions requested during the authorization-code flow
INSTAGRAM_OAUTH_SCOPES = (
    "instagram_business_basic",
    "instagram_business_manage_messages",
    "instagram_business_manage_comments",
    "instagram_business_content_publish",
    "instagram_business_manage_insights",
)

# grant_type for the short-lived -> long-lived token exchange
LONG_LIVED_GRANT_TYPE = "ig_exchange_token"

# Lifetime assumed when the provider omits expires_in (seconds)
DEFAULT_TOKEN_EXPIRES_IN_SECONDS = 3600

DEFAULT_TOKEN_TYPE = "bearer"

# =============================================================================
# Webhooks
# =============================================================================

WEBHOOK_SIGNATURE_HEADER = "x-hub-signature-256"
WEBHOOK_SIGNATURE_PREFIX = "sha256="

# Handshake mode sent by the provider when subscribing a callback URL
WEBHOOK_SUBSCRIBE_MODE = "subscribe"

# Envelope discriminator for Instagram deliveries
DEFAULT_WEBHOOK_OBJECT_TYPE = "instagram"

# The only changes[].field the router understands
COMMENTS_FIELD = "comments"

SIGNED_REQUEST_ALGORITHM = "HMAC-SHA256"

# =============================================================================
# HTTP Timeout Configuration
# =============================================================================

# Timeout for Instagram Graph API calls (seconds)
INSTAGRAM_API_TIMEOUT_SECONDS = 10.0

# =============================================================================
# Instances
# =============================================================================

INSTANCES_TABLE = "instagram_instances"

INSTANCE_NAME_MIN_LENGTH = 3
INSTANCE_NAME_MAX_LENGTH = 50

# Generated internal instance name
GENERATED_INSTANCE_NAME_LENGTH = 10
GENERATED_INSTANCE_NAME_ALPHABET = (
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
)

# Random bytes behind each instance token (hex encoded, so 64 chars)
INSTANCE_TOKEN_BYTES = 32

# Frontend page the OAuth callback redirects back to
CONNECTIONS_PAGE_PATH = "/gerenciador-conexoes"
