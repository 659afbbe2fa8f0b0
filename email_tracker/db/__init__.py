"""Relational record store: engine and ORM models."""

from .engine import DatabaseEngine
from .models import Base, Email, EmailTag

__all__ = ["Base", "DatabaseEngine", "Email", "EmailTag"]
