"""
Business logic services for VetDesk.

Services own data processing and vendor integrations (LLM, Vapi, email,
Slack); API routes and Celery tasks stay thin and call into them.
"""

from .audit import AuditService
from .cases_service import CasesService
from .discharge_orchestrator import DischargeOrchestrator

__all__ = [
    "AuditService",
    "CasesService",
    "DischargeOrchestrator",
]
