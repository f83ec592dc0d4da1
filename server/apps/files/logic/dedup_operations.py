"""Business logic for content deduplication (instant upload)."""

import logging

from server.apps.files.models import File

logger = logging.getLogger(__name__)


def find_duplicate(checksum: str | None, owner_id: int) -> File | None:
    """Find a stored file with identical content owned by the same user.

    Only the digest is compared, never the name or size. Folders and
    deleted records never match. When several records share the digest
    the oldest one wins (lowest id on equal timestamps).

    Args:
        checksum: SHA256 hex digest of the new content.
        owner_id: ID of the uploading user.

    Returns:
        Existing File record, or None if there is nothing to reuse.
    """
    if not checksum:
        return None

    duplicate = File.objects.filter(
        user_id=owner_id,
        checksum_sha256=checksum,
        is_folder=False,
    ).order_by('created_at', 'id').first()

    if duplicate is not None:
        logger.debug(
            'Duplicate content found for user %d: file ID %d',
            owner_id,
            duplicate.id,
        )
    return duplicate
