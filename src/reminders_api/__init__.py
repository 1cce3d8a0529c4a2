"""
Reminders backend package.

FastAPI service for organizations, their reminder collections and reminders
(``reminders_api.main``), plus the client-side optimistic toggle flow that
talks to it (``reminders_api.optimistic``).
"""

__version__ = "0.1.0"
