"""
Static lookup table mapping a bundle identifier to an app category.

Rules are checked in order against the lower-cased bundle id; the first rule
with a matching substring wins. Anything unmatched is 'other'.
"""

from __future__ import annotations

from typing import List, Tuple

from .models import AppCategory

CATEGORY_RULES: List[Tuple[AppCategory, Tuple[str, ...]]] = [
    (AppCategory.DEVELOPMENT, (
        "xcode", "vscode", "jetbrains", "sublime", "atom", "terminal",
        "iterm", "github", "tower",
    )),
    (AppCategory.COMMUNICATION, (
        "slack", "discord", "zoom", "teams", "skype", "messages", "mail",
        "telegram", "whatsapp",
    )),
    (AppCategory.BROWSERS, (
        "safari", "chrome", "firefox", "arc", "brave", "edge", "opera",
    )),
    (AppCategory.PRODUCTIVITY, (
        "notion", "obsidian", "notes", "reminders", "calendar", "todoist",
        "things", "omnifocus", "asana",
    )),
    (AppCategory.DESIGN, (
        "figma", "sketch", "photoshop", "illustrator", "affinity", "pixelmator",
    )),
    (AppCategory.WRITING, (
        "word", "pages", "docs", "ulysses", "bear", "ia-writer",
    )),
    (AppCategory.ENTERTAINMENT, (
        "netflix", "youtube", "twitch", "hulu", "disney", "primevideo",
    )),
    (AppCategory.MUSIC, (
        "spotify", "music", "soundcloud", "podcasts", "audible",
    )),
    (AppCategory.SOCIAL, (
        "twitter", "facebook", "instagram", "tiktok", "reddit", "linkedin",
    )),
    (AppCategory.FINANCE, (
        "quicken", "mint", "excel", "numbers", "banking",
    )),
]


def category_for_bundle(bundle_id: str) -> AppCategory:
    key = bundle_id.lower()
    for category, needles in CATEGORY_RULES:
        if any(n in key for n in needles):
            return category
    return AppCategory.OTHER
