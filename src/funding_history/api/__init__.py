"""Remote API layer -- Drift Data API integration via httpx."""

from funding_history.api.client import FundingApiClient
from funding_history.api.drift_client import DriftDataClient, is_rate_limit_like
from funding_history.api.types import FundingPage

__all__ = ["DriftDataClient", "FundingApiClient", "FundingPage", "is_rate_limit_like"]
