"""Campaign-specific utilities for amounts, progress, countdowns and listings."""

from decimal import Decimal, InvalidOperation
from typing import List, Sequence, Union

from crowdfund_toolkit.campaigns.models import Campaign, CampaignState
from crowdfund_toolkit.shared.constants import CrowdfundConstants

MIST_PER_SUI = CrowdfundConstants.MIST_PER_SUI

EXPIRED_TEXT = "Expired - Ready to finalize!"

STATUS_FILTERS = {
    "all": None,
    "active": CampaignState.ACTIVE,
    "succeeded": CampaignState.SUCCEEDED,
    "failed": CampaignState.FAILED,
}

SORT_KEYS = ("newest", "oldest", "goal", "progress", "deadline")


def sui_to_mist(amount: Union[str, int, float, Decimal]) -> int:
    """
    Convert a SUI amount to MIST, truncating below one MIST.

    Raises:
        ValueError: amount is not a number or is negative
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"Invalid SUI amount: {amount!r}") from e
    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid SUI amount: {amount!r}")
    return int(value * MIST_PER_SUI)


def mist_to_sui(mist: int) -> Decimal:
    return Decimal(mist) / MIST_PER_SUI


def progress_percentage(raised: int, goal: int) -> float:
    """Funding progress in percent, capped at 100."""
    if goal <= 0:
        return 100.0 if raised > 0 else 0.0
    return min(raised * 100 / goal, 100.0)


def campaign_progress(campaign: Campaign) -> float:
    return progress_percentage(campaign.raised, campaign.goal)


def format_countdown(deadline_ms: int, now_ms: int) -> str:
    """Time left until the deadline, e.g. ``"3d 4h 5m 6s"``."""
    remaining = deadline_ms - now_ms
    if remaining <= 0:
        return EXPIRED_TEXT

    seconds = remaining // 1000
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)

    if days > 0:
        return f"{days}d {hours}h {minutes}m {seconds}s"
    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def get_campaign_status(campaign: Campaign, now_ms: int) -> str:
    """
    Determine campaign status for display.
    Returns colored status string for rich console.
    """
    if campaign.state is CampaignState.SUCCEEDED:
        return "[green]Succeeded[/green]"
    if campaign.state is CampaignState.FAILED:
        return "[red]Failed[/red]"
    if campaign.deadline_passed(now_ms):
        return "[orange3]Awaiting finalize[/orange3]"
    return "[cyan]Active[/cyan]"


def search_campaigns(campaigns: Sequence[Campaign], term: str) -> List[Campaign]:
    """Case-insensitive match on title or description."""
    term = term.strip().lower()
    if not term:
        return list(campaigns)
    return [
        c
        for c in campaigns
        if term in c.metadata.title.lower() or term in c.metadata.description.lower()
    ]


def filter_campaigns_by_status(
    campaigns: Sequence[Campaign], status: str
) -> List[Campaign]:
    if status not in STATUS_FILTERS:
        raise ValueError(
            f"Unknown status filter '{status}' (expected one of {', '.join(STATUS_FILTERS)})"
        )
    wanted = STATUS_FILTERS[status]
    if wanted is None:
        return list(campaigns)
    return [c for c in campaigns if c.state is wanted]


def sort_campaigns(campaigns: Sequence[Campaign], sort_by: str) -> List[Campaign]:
    """
    Sort a campaign listing.

    Campaign objects carry no creation time, so newest/oldest order by
    deadline.
    """
    if sort_by == "newest":
        return sorted(campaigns, key=lambda c: c.deadline_ms, reverse=True)
    if sort_by in ("oldest", "deadline"):
        return sorted(campaigns, key=lambda c: c.deadline_ms)
    if sort_by == "goal":
        return sorted(campaigns, key=lambda c: c.goal, reverse=True)
    if sort_by == "progress":
        return sorted(campaigns, key=campaign_progress, reverse=True)
    raise ValueError(
        f"Unknown sort key '{sort_by}' (expected one of {', '.join(SORT_KEYS)})"
    )
