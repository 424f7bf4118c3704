"""
Feedback analysis: keywords, themes, clusters, summaries and priorities.

Pure functions over already-masked events.  The service feeds a tenant's
batch through ``build_clusters`` then ``summarise_themes`` and
``recommendation_priority``; nothing here touches the database or clock.
"""

import re
from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence

from care_modules.pilot_feedback.config import PilotAgentConfig
from care_modules.pilot_feedback.models import (
    PilotFeedbackEvent,
    Priority,
    Severity,
    ThemeCount,
)

GENERAL_THEME = "general_feedback"

THEME_FAMILIES: dict[str, tuple[str, ...]] = {
    "ui_performance": ("slow", "freeze", "lag", "performance"),
    "medication_issues": ("medication", "meds", "drug", "prescription"),
    "login_problems": ("login", "password", "access", "authentication"),
    "data_sync": ("sync", "update", "save", "data"),
}

THEME_ACTIONS: dict[str, tuple[str, ...]] = {
    "ui_performance": (
        "Profile slow screens and database queries",
        "Add loading indicators to long-running views",
    ),
    "medication_issues": (
        "Review the MAR chart workflow with clinical leads",
        "Check medication schedule generation for affected residents",
    ),
    "login_problems": (
        "Review authentication logs for failed sign-ins",
        "Simplify the password reset journey",
    ),
    "data_sync": (
        "Investigate save and sync failures",
        "Add retry and conflict feedback to offline edits",
    ),
}
DEFAULT_ACTIONS = ("Review and analyze feedback patterns", "Schedule team discussion")

# Tokens inserted by mask_pii are never keywords
_WORD_RE = re.compile(r"\[[A-Z_]+\]|[A-Za-z0-9']+")


def extract_keywords(texts: Iterable[str], limit: int = 10) -> tuple[str, ...]:
    """Most frequent words longer than three characters, ties by first use."""
    counts: Counter[str] = Counter()
    for text in texts:
        for word in _WORD_RE.findall(text):
            if len(word) > 3 and not word.startswith("["):
                counts[word.lower()] += 1
    return tuple(word for word, _ in counts.most_common(limit))


def extract_theme(keywords: Sequence[str]) -> str:
    for theme, family in THEME_FAMILIES.items():
        if any(word in family for word in keywords):
            return theme
    return GENERAL_THEME


def group_events(
    events: Iterable[PilotFeedbackEvent],
) -> dict[tuple[str, Severity], list[PilotFeedbackEvent]]:
    groups: dict[tuple[str, Severity], list[PilotFeedbackEvent]] = defaultdict(list)
    for event in events:
        groups[(event.module, event.severity)].append(event)
    return dict(groups)


def summarise_themes(
    clusters: Iterable[tuple[str, str, int]], limit: int = 5
) -> tuple[ThemeCount, ...]:
    """Top themes by event count from ``(theme, module, event_count)`` rows."""
    totals: Counter[str] = Counter()
    modules: dict[str, list[str]] = defaultdict(list)
    for theme, module, count in clusters:
        totals[theme] += count
        if module not in modules[theme]:
            modules[theme].append(module)
    return tuple(
        ThemeCount(theme=theme, count=count, modules=tuple(modules[theme]))
        for theme, count in totals.most_common(limit)
    )


def recommendation_priority(
    severity: Severity, event_count: int, config: PilotAgentConfig
) -> Priority:
    if severity is Severity.CRITICAL or event_count >= config.critical_event_count:
        return Priority.CRITICAL
    if severity is Severity.HIGH or event_count >= config.high_event_count:
        return Priority.HIGH
    if severity is Severity.MEDIUM or event_count >= config.medium_event_count:
        return Priority.MEDIUM
    return Priority.LOW


def proposed_actions(theme: str) -> tuple[str, ...]:
    return THEME_ACTIONS.get(theme, DEFAULT_ACTIONS)


def risk_notes(
    events: Sequence[PilotFeedbackEvent],
    pii_masked: int,
    top_themes: Sequence[ThemeCount],
) -> str:
    notes = ["No PHI in outputs."]
    severe = sum(1 for e in events if e.severity in (Severity.HIGH, Severity.CRITICAL))
    if severe:
        notes.append(f"{severe} high or critical severity event(s) in this window.")
    if pii_masked:
        notes.append(f"Personal data masked in {pii_masked} event(s).")
    if top_themes:
        notes.append(f"Leading theme: {top_themes[0].theme}.")
    return " ".join(notes)
