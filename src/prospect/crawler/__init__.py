"""
Breadth-first crawling over the acquisition pipeline.
"""

from .crawler import Crawler

__all__ = ["Crawler"]
