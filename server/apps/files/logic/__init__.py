"""Business logic layer for files app.

This package contains all business logic for file operations:
- Synchronous and asynchronous uploads with content deduplication
- Upload task tracking for progress polling
- Download, listing, search, rename and folder management
- Reference-counted deletion of stored objects

All business logic should be implemented here, separate from
models (data layer) and infrastructure (external systems).
"""
