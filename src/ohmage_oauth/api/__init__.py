# ohmage OAuth HTTP API Layer
# Created: 2026-10-19
#
# FastAPI application, shared dependencies and the domain routers.
