"""Common data models and utilities for the application."""

from .user import Role, User, has_higher_role

__all__ = ["Role", "User", "has_higher_role"]
