"""
Career Sewa API — Application Package Initializer
===================================================

What: Marks the `career_sewa` directory as a Python package.
Why:  Enables module imports like `from career_sewa.config import settings`.
Who:  Used implicitly by Python's import system and explicitly by pytest and uvicorn.

Architecture Note:
    The backend follows a layered architecture:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns, response envelope
    ├─────────────────────────────────────┤
    │     Services (Health, Users)        │  ← Probes, aggregation, user rules
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │   DatabaseConnection (Lifecycle)    │  ← connect / retry / health / shutdown
    └─────────────────────────────────────┘

    The DatabaseConnection is built once by the application factory and
    handed to everything that needs it; nothing reaches for a global engine.
"""

__version__ = "1.0.0"

SERVICE_NAME = "career-sewa-api"
