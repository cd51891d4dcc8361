# accessgate — identity and access layer.
# Created: 2026-10-02
#
# Group permission resolution, OAuth2 authorization server (PKCE, client
# credentials, refresh rotation, consent), JWT issuance and admin rescue.

__version__ = "0.1.0"
