"""HTTP middleware for the ticket lifecycle API."""

from .rbac import RBACMiddleware

__all__ = ["RBACMiddleware"]
