"""Data models for activity recommendations."""

from __future__ import annotations

from typing import TypedDict


class _ActivityBase(TypedDict):
    title: str
    content: str


class Activity(_ActivityBase, total=False):
    """One suggested activity. ``placeId`` is added by the places lookup."""

    location: str
    requests: str
    url: str
    placeId: str


class Recommendation(TypedDict):
    """The structured reply of the recommendation model."""

    message: str
    date: str
    activities: list[Activity]
