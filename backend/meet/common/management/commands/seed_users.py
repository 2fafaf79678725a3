# meet/common/management/commands/seed_users.py
from django.core.management.base import BaseCommand
from django.db import transaction
from django.contrib.auth import get_user_model

from meet.users.views import issue_jwt_for_user


DEMO_USERS = [
    dict(email="alex@snu.edu", display_name="alex"),
    dict(email="bora@kaist.edu", display_name="bora"),
    dict(email="chris@ox.ac.uk", display_name="chris"),
    dict(email="dana@yonsei.edu", display_name="dana"),
]


class Command(BaseCommand):
    help = "Seed verified demo users and print a dev JWT for each"

    def add_arguments(self, parser):
        parser.add_argument(
            "--no-tokens", action="store_true", help="skip printing JWTs"
        )

    @transaction.atomic
    def handle(self, *args, **options):
        User = get_user_model()

        created_count = 0
        for data in DEMO_USERS:
            user = User.objects.filter(email=data["email"]).first()
            if user is None:
                user = User.objects.create_user(
                    data["email"],
                    password="test1234!",
                    is_verified=True,
                    display_name=data["display_name"],
                )
                created_count += 1

            if not options["no_tokens"]:
                self.stdout.write(f"{user.email}\t{issue_jwt_for_user(user)}")

        self.stdout.write(self.style.SUCCESS(f"users done (created={created_count})"))
