"""Crowdfund Toolkit - Python client core for on-chain crowdfunding campaigns."""

__version__ = "0.3.0"

from .campaigns.service import CampaignService
from .campaigns.session import CampaignSession

__all__ = ["CampaignService", "CampaignSession"]
