"""Services module for business logic and data operations.

Each service wraps an ``AsyncSession`` and leaves committing to the caller,
see ``stockwatch.db.utils.session_scope``. The bulk orchestrator is the
exception: it commits after every item.
"""
