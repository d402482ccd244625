"""
Integrations module for mirroring external task and calendar providers.

Architecture:
- adapter.py: Capability contract and the records flowing through a pass
- orchestrator.py: The generic sync pass (refresh, paginate, upsert, reconcile)
- store.py: SQL store for credentials and local records
- providers/{provider}.py: Provider-specific endpoints, pagination and mapping
- service.py: Provider registry and service functions
- tasks.py: Celery tasks (single sync and the scheduled sync-all)
- router.py / schemas.py: FastAPI endpoints

Adding a provider means writing a providers/{provider}.py module and
registering its ADAPTER in PROVIDER_REGISTRY. The orchestrator is untouched.
"""

from app.models.integration import Integration, IntegrationProvider

__all__ = [
    "Integration",
    "IntegrationProvider",
]
