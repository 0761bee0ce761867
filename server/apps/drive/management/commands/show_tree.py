"""Management command to print an owner's folder tree."""

from typing import Any

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from server.apps.drive.logic.facade import DriveFacade

User = get_user_model()

_INDENT = '    '


class Command(BaseCommand):
    """Print the folder hierarchy of one user."""

    help = 'Print the folder tree of a user'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument('username', help='Owner of the tree')

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the command.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        username = options['username']
        try:
            owner = User.objects.get(username=username)
        except User.DoesNotExist:
            raise CommandError(f'User not found: {username}') from None

        outcome = DriveFacade().folder_tree(owner.pk)
        if not outcome.ok:
            raise CommandError(outcome.message)

        stack = [(outcome.payload, 0)]
        while stack:
            node, depth = stack.pop()
            self.stdout.write(f'{_INDENT * depth}{node["name"]}/')
            stack.extend(
                (child, depth + 1) for child in reversed(node['subfolders'])
            )
