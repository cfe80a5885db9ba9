"""
Resilience Layer for SiaLedger.

Provides retry policies for daemon requests.
"""

from .retry import is_transient_error, retry_policy

__all__ = [
    "is_transient_error",
    "retry_policy",
]
