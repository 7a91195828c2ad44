"""
API Routes Package

This package contains FastAPI route handlers for the application.
Each module defines routes for a specific feature area:

- auth.py: OAuth sign-in, callback, logout and the current user
- sayings.py: Feed, saying creation/deletion, likes, form choices
- users.py: User preferences

Routes are registered in main.py using FastAPI's router system.
"""
