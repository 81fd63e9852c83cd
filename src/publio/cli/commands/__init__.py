"""CLI command modules."""

from . import db, jobs, offers, orgs, schedule, searches, tenders

__all__ = [
    "db",
    "jobs",
    "offers",
    "orgs",
    "schedule",
    "searches",
    "tenders",
]
