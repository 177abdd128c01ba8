"""HTTP clients for the experiment/flag service and the analytics engine.

Each client follows the same pattern:
- Accepts a base URL and optional bearer token in __init__
- Exposes an `is_available` property (True when a URL is set)
- Logs and returns mock data when the service is not configured
- Uses httpx.AsyncClient for real HTTP calls
"""

from skuld.clients.analytics import AnalyticsClient
from skuld.clients.experiments import ExperimentServiceClient

__all__ = [
    "AnalyticsClient",
    "ExperimentServiceClient",
]
