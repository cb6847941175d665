"""
Service layer package.

Each service module encapsulates one domain of business logic.
Services are the only layer that interacts with models; routes
never access the database directly.  Best-effort side effects
(asset sync, notifications) return a ``SideEffectResult`` instead of
raising.

Import services in route modules as needed::

    from app.services import allocation_service
"""
