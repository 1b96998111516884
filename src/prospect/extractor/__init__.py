"""
Field extraction from fetched content.
"""

from .engine import DEFAULT_TRANSFORMS, LOCATORS, TRANSFORMS, ExtractionEngine, ExtractionOutcome

__all__ = ["DEFAULT_TRANSFORMS", "LOCATORS", "TRANSFORMS", "ExtractionEngine", "ExtractionOutcome"]
