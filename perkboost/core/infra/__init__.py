"""
Process-level infrastructure orchestration.
"""

from perkboost.core.infra.application_context import ApplicationContext

__all__ = ["ApplicationContext"]
