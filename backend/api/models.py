"""
User profile rows that mirror accounts in the hosted auth provider.

The primary key is the auth provider's user id, so a verified token's subject
maps straight onto a profile without a lookup table.
"""

from django.db import models


class UserProfile(models.Model):
    ROLE_USER = "user"
    ROLE_ADMIN = "admin"
    ROLE_CHOICES = [
        (ROLE_USER, "User"),
        (ROLE_ADMIN, "Admin"),
    ]

    id = models.UUIDField(primary_key=True)
    full_name = models.CharField(max_length=150, null=True, blank=True)
    email = models.EmailField(max_length=254, null=True, blank=True)
    avatar_url = models.URLField(max_length=500, null=True, blank=True)
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_USER)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "user_profiles"
        ordering = ["full_name"]

    def __str__(self):
        return f"{self.full_name or self.email or self.id} ({self.role})"
