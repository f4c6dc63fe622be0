"""Filename-like content title detection.

Upstream exports sometimes carry the media filename (``ad1.mp4``) where a
human-readable title belongs. The patterns differ per stage on purpose:
each matches what that stage repairs or rejects.
"""

from __future__ import annotations

import re

# Impression titles repaired from the owning session (rule A)
REPAIRABLE_IMPRESSION_SUFFIXES = (".mp4", ".jpg")

# Session titles repaired from linked impressions (rule B) and campaign-title filter
FILENAME_TITLE_RE = re.compile(r"\.(mp4|jpg|jpeg|png)$")
FILENAME_TITLE_SUFFIXES = (".mp4", ".jpg", ".jpeg", ".png")

# Strict CSV quality check (substring match, case-insensitive)
FORBIDDEN_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".bmp", ".mp4", ".mov", ".avi", ".webm")

_IMAGE_RE = re.compile(r"\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)
_VIDEO_RE = re.compile(r"\.(mp4|mov|avi|mkv|webm)$", re.IGNORECASE)

UNKNOWN_IMAGE_TITLE = "Unknown image"
UNKNOWN_VIDEO_TITLE = "Unknown video"


def is_filename_title(title: str | None) -> bool:
    return bool(title) and FILENAME_TITLE_RE.search(title) is not None


def is_repairable_impression_title(title: str | None) -> bool:
    return bool(title) and title.endswith(REPAIRABLE_IMPRESSION_SUFFIXES)


def contains_forbidden_extension(value: str | None) -> bool:
    if not value:
        return False
    lowered = value.lower()
    return any(ext in lowered for ext in FORBIDDEN_EXTENSIONS)


def display_title(title: str | None) -> str:
    """Map filename-like titles to a readable placeholder."""
    if not title:
        return ""
    if _IMAGE_RE.search(title):
        return UNKNOWN_IMAGE_TITLE
    if _VIDEO_RE.search(title):
        return UNKNOWN_VIDEO_TITLE
    return title
