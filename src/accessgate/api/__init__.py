# accessgate HTTP API.
# Created: 2026-10-09
#
# FastAPI routers for the OAuth2 endpoints, discovery documents, local
# login and client/user administration. See serve.create_api_app().
