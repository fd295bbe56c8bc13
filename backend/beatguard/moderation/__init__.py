"""Moderation package integration helpers exposed to the application."""

from beatguard.moderation.domain.container import configure, configure_postgres, get_intake_service

__all__ = ["configure", "configure_postgres", "get_intake_service"]
