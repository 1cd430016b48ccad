"""
User test factory.

Generates unsaved ``User`` rows for authentication and ownership tests.
"""

import factory
from faker import Faker

from crm_notifications.models.user import User

fake = Faker()


class UserFactory(factory.Factory):
    """
    Factory for generating User rows.

    Usage:
        user = UserFactory()
        user = UserFactory(email="custom@example.com")
    """

    class Meta:
        model = User

    email = factory.LazyFunction(lambda: fake.unique.email().lower())
    first_name = factory.LazyFunction(fake.first_name)
    last_name = factory.LazyFunction(fake.last_name)
    is_active = True
    is_superuser = False


class AdminUserFactory(UserFactory):
    """Factory for admin users."""

    is_superuser = True


class InactiveUserFactory(UserFactory):
    """Factory for inactive users."""

    is_active = False
