"""Upload ingestion and deployment core for Tinny site hosting.

This package intentionally keeps FastAPI route handlers thin:
- upload validation (declared type, extension, size)
- HTML sanitization against a tag/attribute/scheme allowlist
- ZIP extraction with Zip Slip protection into a staging directory
- atomic deployment of staged files into <owner_id>/<site_id>/

Security note:
Owner and site ids become directory names, so they are validated strictly.
Never log uploaded content or expose filesystem paths in responses.
"""
