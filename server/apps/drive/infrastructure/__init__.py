"""Infrastructure layer for drive app.

This package contains integrations with external systems:
- Metadata store over the Django ORM (owner-scoped queries)
- Blob storage backends (local filesystem, S3/MinIO/R2)
- Naming of staged and committed blobs

Keep infrastructure concerns separate from business logic.
"""
