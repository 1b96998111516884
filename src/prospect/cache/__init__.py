"""
Result cache with lazy expiry and single-flight de-duplication.
"""

from .result_cache import ResultCache
from .single_flight import SingleFlight

__all__ = ["ResultCache", "SingleFlight"]
