"""Unit tests for achievement statistics (progression/gamification/stats_aggregator.py)"""
import pytest

from progression.gamification.catalog import AchievementCatalog
from progression.gamification.stats_aggregator import StatsAggregator, compute_summary


def test_completion_percentage(make_definition):
    """3 of 10 unlocked is 30%"""
    catalog = AchievementCatalog.from_dicts([make_definition(f"a{i}") for i in range(10)])

    summary = compute_summary("u1", catalog.all(), ["a0", "a1", "a2"])

    assert summary.unlocked_count == 3
    assert summary.total_count == 10
    assert summary.completion_percentage == 30.0


def test_empty_catalog():
    summary = compute_summary("u1", [], [])

    assert summary.total_count == 0
    assert summary.completion_percentage == 0.0
    assert summary.total_points == 0


def test_points_only_from_points_rewards(catalog):
    """Badge/title/streakFreeze values are not points"""
    summary = compute_summary(
        "u1", catalog.all(), ["first_italian", "pasta_fan", "streak_starter", "first_like"]
    )

    assert summary.total_points == 35


def test_breakdowns(catalog):
    summary = compute_summary("u1", catalog.all(), ["first_italian", "pasta_fan", "hidden_gem"])

    assert summary.rarity_breakdown == {"common": 1, "uncommon": 1, "legendary": 1}
    assert summary.category_breakdown == {"culinary": 2, "special": 1}


def test_unknown_unlocks_ignored(catalog):
    """Unlocks for achievements no longer in the catalog are not counted"""
    summary = compute_summary("u1", catalog.all(), ["retired_achievement"])

    assert summary.unlocked_count == 0
    assert summary.completion_percentage == 0.0


@pytest.mark.asyncio
async def test_summarize_reads_store(store, catalog, make_event):
    from progression.gamification.achievement_evaluator import AchievementEvaluator

    await AchievementEvaluator(store, catalog).evaluate(make_event("evt-1"))
    summary = await StatsAggregator(store, catalog).summarize("user-123")

    assert summary.unlocked_count == 1
    assert summary.total_points == 25
    assert summary.completion_percentage == pytest.approx(100 / 6)
