"""Signal handlers for drive app."""

import logging

from django.contrib.auth import get_user_model
from django.db.models.signals import post_save
from django.dispatch import receiver

from server.apps.drive.logic.hierarchy import build_engine

User = get_user_model()
logger = logging.getLogger(__name__)


@receiver(post_save, sender=User)
def create_root_folder_for_new_user(
    sender: type[User],
    instance: User,
    created: bool,  # noqa: FBT001
    raw: bool = False,  # noqa: FBT001, FBT002
    **kwargs: object,
) -> None:
    """Create the root folder when a user account is created.

    The handler runs inside the transaction that saves the user, so
    with ATOMIC_REQUESTS or an explicit transaction.atomic() block a
    failure here also rolls back the user row.

    Args:
        sender: The User model class.
        instance: The saved User instance.
        created: Whether the row was inserted.
        raw: Whether the save comes from fixture loading.
        **kwargs: Additional signal arguments.
    """
    if not created or raw:
        return

    logger.info('Creating root folder for new user %s', instance.pk)
    build_engine().create_root_folder(instance.pk)
