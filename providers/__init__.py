from providers.service import MetricsProvider
from providers.factory import make_provider
from providers.response_parser import extract_view_count, extract_dataset_views

__all__ = [
    "MetricsProvider",
    "make_provider",
    "extract_view_count",
    "extract_dataset_views",
]
