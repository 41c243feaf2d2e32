# OAuth2 protocol constants.
# Created: 2026-03-02

GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_CLIENT_CREDENTIALS = "client_credentials"
GRANT_REFRESH_TOKEN = "refresh_token"

SUPPORTED_GRANT_TYPES = frozenset(
    {GRANT_AUTHORIZATION_CODE, GRANT_CLIENT_CREDENTIALS, GRANT_REFRESH_TOKEN}
)

RESPONSE_TYPE_CODE = "code"
CODE_CHALLENGE_METHOD_S256 = "S256"

TOKEN_TYPE = "Bearer"
ACCESS_TOKEN_TYP = "oauth_access"

TOKEN_TYPE_HINT_ACCESS = "access_token"
TOKEN_TYPE_HINT_REFRESH = "refresh_token"

# Generated identifiers / secrets (alphanumeric lengths)
CLIENT_ID_PREFIX = "twc_"
CLIENT_ID_LENGTH = 24
CLIENT_SECRET_LENGTH = 48
AUTHORIZATION_CODE_LENGTH = 64
REFRESH_TOKEN_LENGTH = 64
WEBHOOK_SECRET_LENGTH = 32

# RFC 7636 section 4.1
PKCE_MIN_LENGTH = 43
PKCE_MAX_LENGTH = 128

CLIENT_NAME_MAX_LENGTH = 100
CLIENT_DESCRIPTION_MAX_LENGTH = 500
