"""Execution plans: the ordered steps run for each workflow type."""

from __future__ import annotations

from typing import Dict, List

DEFAULT_PLAN = "test"

PLANS: Dict[str, List[str]] = {
    "full_listing": [
        # data collection
        "mls_data_ingester",
        "property_photos_collector",
        "competitive_analysis_engine",
        # content generation
        "master_content_generator",
        "facebook_post_generator",
        "instagram_caption_generator",
        # publishing
        "facebook_publisher",
        "instagram_publisher",
        # analytics
        "engagement_tracker",
        # lead management
        "lead_capture_monitor",
    ],
    DEFAULT_PLAN: [
        "test_node",
    ],
}


def resolve(workflow_type: str) -> List[str]:
    """Return the ordered step names for ``workflow_type``.

    Unknown types resolve to the ``test`` plan rather than raising, so every
    workflow has something to run.
    """
    return list(PLANS.get(workflow_type, PLANS[DEFAULT_PLAN]))


def available_plans() -> Dict[str, List[str]]:
    return {name: list(steps) for name, steps in PLANS.items()}
