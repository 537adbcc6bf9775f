"""
Polar webhook ingestion.

- verifier: HMAC-SHA256 signature checks
- handlers: event type -> handler registry
- ingestion: verify, parse, claim and apply one delivery
- views: the HTTP endpoint
"""
