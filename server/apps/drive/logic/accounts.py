"""Business logic for drive owner accounts."""

import logging
from typing import Any

from django.contrib.auth import get_user_model
from django.db import transaction

User = get_user_model()
logger = logging.getLogger(__name__)


def register_owner(username: str, password: str, **extra_fields: Any) -> Any:
    """Create a user account together with its root folder.

    The root folder is created by the post_save handler in signals.py;
    both rows are written in one transaction, so a failure while
    creating the root folder leaves no user behind.

    Args:
        username: Login name.
        password: Raw password (hashed by Django).
        **extra_fields: Additional User fields (e.g., email).

    Returns:
        Created User instance.
    """
    with transaction.atomic():
        user = User.objects.create_user(
            username=username,
            password=password,
            **extra_fields,
        )
    logger.info('Registered drive owner %s (ID: %d)', username, user.pk)
    return user
