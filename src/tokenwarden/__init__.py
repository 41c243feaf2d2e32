"""tokenwarden - OAuth2 authorization server core.

Client registry, authorization-code + PKCE, client credentials,
refresh rotation, RFC 7009 revocation and signed outbound webhooks.
"""

__version__ = "0.1.0"
