"""Recommendation gateway: the chat-completion and places API clients."""

from __future__ import annotations

import hashlib
import json
import logging
import re
import threading
from collections import OrderedDict
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Optional

import requests

from hangsmart.core.constants import (
    DEFAULT_RECOMMENDATION_MODEL,
    DEFAULT_UPSTREAM_TIMEOUT,
    RECOMMENDATION_CACHE_SIZE,
)
from hangsmart.errors import UpstreamError

from .models import Activity, Recommendation

if TYPE_CHECKING:
    from hangsmart.group.models import Group, Preferences

CHAT_COMPLETIONS_URL = "https://api.perplexity.ai/chat/completions"
FIND_PLACE_URL = "https://maps.googleapis.com/maps/api/place/findplacefromtext/json"

SYSTEM_PROMPT = (
    "You are a helpful assistant that suggests common activities and places for "
    "groups of people based on their preferences. Format your response as a JSON "
    "object with the following structure: { message: string, date: string, "
    "activities: [{ title: string, content: string, location: string, "
    "requests: string, url: string }] }"
)
PROMPT_PREAMBLE = (
    "Based on the following group preferences, suggest activities and places "
    "that appeal to all members of the group:\n\n"
)
PROMPT_CLOSING = (
    "Please suggest common activities that would appeal to the whole group, "
    "taking into account their interests, availability, and any special "
    "requests. Include specific locations and URLs where applicable."
)
OPTIONAL_ACTIVITY_FIELDS = ("location", "requests", "url")

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)

log = logging.getLogger(__name__)


def build_prompt(preferences: Sequence[Preferences]) -> str:
    """Describe every member's preferences as labeled lines."""
    prompt = PROMPT_PREAMBLE
    for index, pref in enumerate(preferences, start=1):
        prompt += f"Member {index}:\n"
        prompt += f"- Interests: {pref.get('interests', '')}\n"
        prompt += f"- Availability: {pref.get('availability', '')}\n"
        prompt += f"- Special Requests: {pref.get('specialRequests', '')}\n"
        prompt += f"- Location: {pref.get('location', '')}\n\n"
    return prompt + PROMPT_CLOSING


def parse_recommendation(content: str) -> Recommendation:
    """Parse the model's message content into a Recommendation.

    Raises:
        UpstreamError: If the content is not the JSON shape we asked for.
    """
    text = (content or "").strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        data = json.loads(text)
    except ValueError as e:
        raise UpstreamError("The recommendation service returned invalid JSON.") from e

    if not isinstance(data, dict):
        raise UpstreamError("The recommendation service returned an unexpected reply.")
    missing = [key for key in ("message", "date", "activities") if key not in data]
    if missing:
        raise UpstreamError(
            f"The recommendation reply is missing {', '.join(missing)}."
        )
    if not isinstance(data["activities"], list):
        raise UpstreamError("The recommendation reply has no activity list.")

    if not isinstance(data["message"], str) or not isinstance(data["date"], str):
        raise UpstreamError("The recommendation reply has a non-text message or date.")

    activities: list[Activity] = []
    for raw in data["activities"]:
        if (
            not isinstance(raw, dict)
            or not isinstance(raw.get("title"), str)
            or not raw["title"]
            or not isinstance(raw.get("content"), str)
        ):
            raise UpstreamError("The recommendation reply has a malformed activity.")
        activity: Activity = {"title": raw["title"], "content": raw["content"]}
        for field in OPTIONAL_ACTIVITY_FIELDS:
            value = raw.get(field)
            if value is None or value == "":
                continue
            if not isinstance(value, str):
                raise UpstreamError(f"The recommendation reply has a non-text {field}.")
            activity[field] = value  # type: ignore[literal-required]
        activities.append(activity)

    return {
        "message": data["message"],
        "date": data["date"],
        "activities": activities,
    }


class RecommendationGateway:
    """Client for the recommendation model and the places lookup."""

    def __init__(
        self,
        api_key: str | None,
        places_api_key: str | None = None,
        model: str = DEFAULT_RECOMMENDATION_MODEL,
        timeout: float = DEFAULT_UPSTREAM_TIMEOUT,
        http: requests.Session | None = None,
    ) -> None:
        self.api_key = api_key
        self.places_api_key = places_api_key
        self.model = model
        self.timeout = timeout
        self.http = http or requests.Session()

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> RecommendationGateway:
        return cls(
            api_key=config.get("PERPLEXITY_API_KEY"),
            places_api_key=config.get("GOOGLE_PLACES_API_KEY"),
            model=config.get("PERPLEXITY_MODEL") or DEFAULT_RECOMMENDATION_MODEL,
            timeout=config.get("UPSTREAM_TIMEOUT") or DEFAULT_UPSTREAM_TIMEOUT,
        )

    def request_recommendations(
        self, preferences: Sequence[Preferences]
    ) -> Recommendation:
        """Ask the model for activities that suit every member.

        The caller must already have checked that the group is ready.

        Raises:
            UpstreamError: On any transport, status or parse failure.
        """
        if not self.api_key:
            raise UpstreamError("The recommendation service is not configured.")

        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(preferences)},
            ],
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            resp = self.http.post(
                CHAT_COMPLETIONS_URL, json=body, headers=headers, timeout=self.timeout
            )
            resp.raise_for_status()
            content = resp.json()["choices"][0]["message"]["content"]
        except requests.RequestException as e:
            log.error("Recommendation request failed: %s", e)
            raise UpstreamError("Failed to get recommendations. Please try again.") from e
        except (ValueError, KeyError, IndexError, TypeError) as e:
            log.error("Recommendation response was malformed: %s", e)
            raise UpstreamError("The recommendation service returned an unexpected reply.") from e

        recommendation = parse_recommendation(content)
        recommendation["activities"] = [
            self._with_place_id(activity) for activity in recommendation["activities"]
        ]
        return recommendation

    def lookup_place_id(self, location: str) -> Optional[str]:
        """Find a place id for a free-text location.

        On error, None is returned and the exception is logged.
        """
        if not location or not self.places_api_key:
            return None
        params = {
            "input": location,
            "inputtype": "textquery",
            "fields": "place_id",
            "key": self.places_api_key,
        }
        try:
            resp = self.http.get(FIND_PLACE_URL, params=params, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            log.warning("Places lookup failed for %r: %s", location, e)
            return None

        candidates = body.get("candidates") if isinstance(body, dict) else body
        if not candidates:
            return None
        if not isinstance(body, dict) or not isinstance(candidates, list):
            log.warning("Places lookup for %r returned a malformed reply.", location)
            return None
        first = candidates[0]
        place_id = first.get("place_id") if isinstance(first, dict) else None
        if not isinstance(place_id, str) or not place_id:
            log.warning("Places lookup for %r returned no usable place id.", location)
            return None
        return place_id

    def _with_place_id(self, activity: Activity) -> Activity:
        location = activity.get("location")
        if not location:
            return activity
        place_id = self.lookup_place_id(location)
        if place_id:
            return {**activity, "placeId": place_id}
        return activity


def preferences_fingerprint(group: Group) -> str:
    """Identify the set of submissions a recommendation was built from."""
    parts = []
    for member in group.get("members") or []:
        updated_at = (member.get("preferences") or {}).get("updatedAt")
        stamp = updated_at.isoformat() if hasattr(updated_at, "isoformat") else str(updated_at)
        parts.append(f"{member.get('uid')}@{stamp}")
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


class RecommendationCache:
    """Keeps the latest recommendation per group, keyed by submission state.

    At most ``max_entries`` groups are remembered; the least recently used
    group is evicted first.
    """

    def __init__(self, max_entries: int = RECOMMENDATION_CACHE_SIZE) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, tuple[str, Recommendation]] = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, group: Group) -> Optional[Recommendation]:
        with self._lock:
            entry = self._entries.get(group["id"])
            if entry is not None:
                self._entries.move_to_end(group["id"])
        if entry and entry[0] == preferences_fingerprint(group):
            return entry[1]
        return None

    def put(self, group: Group, recommendation: Recommendation) -> None:
        entry = (preferences_fingerprint(group), recommendation)
        with self._lock:
            self._entries[group["id"]] = entry
            self._entries.move_to_end(group["id"])
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def get_group_recommendations(
    gateway: RecommendationGateway, cache: RecommendationCache, group: Group
) -> Recommendation:
    """Return the cached recommendation for a ready group or fetch a new one."""
    cached = cache.get(group)
    if cached is not None:
        return cached
    preferences = [
        member["preferences"]
        for member in group.get("members") or []
        if member.get("preferences") is not None
    ]
    recommendation = gateway.request_recommendations(preferences)
    cache.put(group, recommendation)
    return recommendation
