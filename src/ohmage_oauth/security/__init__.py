# Security helpers: audit trail and rate limiting.
# Created: 2026-10-19
