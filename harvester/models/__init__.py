"""API request and response models."""

from harvester.models.requests import StartScraperRequest
from harvester.models.responses import ApiResponse, to_data

__all__ = ["ApiResponse", "StartScraperRequest", "to_data"]
