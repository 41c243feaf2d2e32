# OAuth2 authorization server core.
# Created: 2026-03-02
