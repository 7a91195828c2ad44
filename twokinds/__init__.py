"""
Two Kinds of People Application Package

Users sign in through an OAuth provider, submit paired-statement
"sayings" ("there are two kinds of drivers: those who ... and those
who ..."), like them, and browse a feed. The package is organized as
follows:

- config.py: Application configuration and environment settings
- database.py: Database connection and session management
- dependencies.py: FastAPI dependency injection functions
- errors.py: Exception taxonomy shared by services and routes
- limiter.py: Per-IP request throttle
- log.py: Logging handlers (console and database)
- main.py: FastAPI application entry point
- models.py: SQLAlchemy ORM database models

Subpackages:
- routes/: API route handlers (auth, sayings, users)
- services/: Business logic (sessions, OAuth, user reconciliation,
  rate limiting, moderation, likes, sayings)
- utils/: Utility functions (text, validators)
"""
