from .fake_browser import FakeBrowserEnvironment, FakeRoute, crash_error, net_error
from .fake_fetchers import MemorySink, RecordingFetcher
from .metric_delta import get_histogram_count, histogram_observes, metric_delta, metric_increases, metric_value
from .pdf_documents import build_pdf

__all__ = [
    "FakeBrowserEnvironment",
    "FakeRoute",
    "MemorySink",
    "RecordingFetcher",
    "build_pdf",
    "crash_error",
    "get_histogram_count",
    "histogram_observes",
    "metric_delta",
    "metric_increases",
    "metric_value",
    "net_error",
]
