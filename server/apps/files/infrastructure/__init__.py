"""Infrastructure layer for files app.

This package contains integrations with external systems:
- Storage backends (S3/MinIO/R2 and local filesystem)
- Metadata extraction (MIME type, checksum, object keys)
- Progress events and the upload worker pool

Keep infrastructure concerns separate from business logic.
"""
