"""
Origin scraping: headless rendering and HTML extraction.
"""
from .breaker import CircuitState, create_render_breaker, get_breaker_stats, get_state
from .extractor import extract_records, extract_week_options
from .renderer import BrowserRenderer

__all__ = [
    # Rendering
    "BrowserRenderer",
    "create_render_breaker",
    "get_breaker_stats",
    "get_state",
    "CircuitState",
    # Extraction
    "extract_records",
    "extract_week_options",
]
