"""Image moderation gate — two external classifiers, both must pass.

Stage ``general`` asks Sightengine about nudity, weapons, drugs, gore,
violence, scams and offensive content. Stage ``contraband`` asks Hive about
alcohol, tobacco and drug paraphernalia, and only runs when the first stage
passed. Thresholds are data: each stage is a table of ``ThresholdRule`` rows
evaluated by ``flagged_signals``.

The gate fails closed and never retries. A classifier that cannot be reached
or returns an unexpected payload rejects the image.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable, Mapping, Optional

import httpx

from campus_market.config import settings
from campus_market.services.errors import ModerationFlagged, ModerationServiceError

logger = logging.getLogger(__name__)

STAGE_GENERAL = "general"
STAGE_CONTRABAND = "contraband"


@dataclass(frozen=True)
class ThresholdRule:
    signal: str
    path: tuple[str, ...]
    cutoff: float


GENERAL_RULES: tuple[ThresholdRule, ...] = (
    ThresholdRule("nudity_raw", ("nudity", "raw"), 0.8),
    ThresholdRule("nudity_partial", ("nudity", "partial"), 0.8),
    ThresholdRule("offensive", ("offensive", "prob"), 0.85),
    ThresholdRule("scam", ("scam", "prob"), 0.9),
    ThresholdRule("drugs", ("drugs", "prob"), 0.6),
    ThresholdRule("gore", ("gore", "prob"), 0.6),
    ThresholdRule("violence", ("violence", "prob"), 0.9),
    ThresholdRule("weapon", ("weapon",), 0.8),
    ThresholdRule("weapon_firearm", ("weapon_firearm",), 0.8),
)

CONTRABAND_LABELS = (
    "alcohol",
    "cigarette",
    "cigar",
    "hookah",
    "smoking",
    "drugs",
    "drug paraphernalia",
    "blunt",
    "joint",
    "substance use",
    "vape",
    "shisha",
    "bong",
    "beer",
    "whiskey",
    "wine",
    "vodka",
)
CONTRABAND_CUTOFF = 0.45

CONTRABAND_RULES: tuple[ThresholdRule, ...] = tuple(
    ThresholdRule(label, (label,), CONTRABAND_CUTOFF) for label in CONTRABAND_LABELS
)


def _as_score(value: Any) -> float:
    # bool is an int subclass; a flag is not a probability
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def read_score(payload: Mapping[str, Any], path: Iterable[str]) -> float:
    """Follow ``path`` into ``payload``. Missing or non-numeric values score 0."""
    node: Any = payload
    for key in path:
        if not isinstance(node, Mapping):
            return 0.0
        node = node.get(key)
    return _as_score(node)


def flagged_signals(rules: Iterable[ThresholdRule], scores: Mapping[str, Any]) -> list[tuple[str, float]]:
    """Every rule whose score is strictly above its cutoff, in rule order."""
    flagged = []
    for rule in rules:
        score = read_score(scores, rule.path)
        if score > rule.cutoff:
            flagged.append((rule.signal, score))
    return flagged


def describe_flags(flagged: list[tuple[str, float]]) -> str:
    return "Flagged: " + ", ".join(f"{signal} ({score:.2f})" for signal, score in flagged)


def contraband_scores(payload: Mapping[str, Any]) -> dict[str, float]:
    """Collapse Hive's ``output[0].classes`` into ``{label: best score}``.

    Raises ValueError when the payload does not have that shape.
    """
    output = payload.get("output") if isinstance(payload, Mapping) else None
    if not isinstance(output, list) or not output or not isinstance(output[0], Mapping):
        raise ValueError("missing output")
    classes = output[0].get("classes")
    if not isinstance(classes, list):
        raise ValueError("missing classes")

    scores: dict[str, float] = {}
    for item in classes:
        if not isinstance(item, Mapping) or not isinstance(item.get("class"), str):
            continue
        label = item["class"].strip().lower()
        scores[label] = max(scores.get(label, 0.0), _as_score(item.get("value")))
    return scores


# ─────────────────────────────────────────────────────────────────────────────
# Classifier clients
# ─────────────────────────────────────────────────────────────────────────────

class SightengineClient:
    """General-purpose classifier (stage ``general``)."""

    def __init__(
        self,
        api_user: str,
        api_secret: str,
        url: str = "https://api.sightengine.com/1.0/check.json",
        models: str = "nudity,wad,offensive,gore,scam,violence",
        timeout_seconds: float = 20.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_user = api_user
        self.api_secret = api_secret
        self.url = url
        self.models = models
        self._client = httpx.Client(timeout=httpx.Timeout(timeout_seconds), transport=transport)

    def check(self, image_url: str) -> dict:
        params = {
            "url": image_url,
            "models": self.models,
            "api_user": self.api_user,
            "api_secret": self.api_secret,
        }
        try:
            resp = self._client.get(self.url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Sightengine request failed: %s", e)
            raise ModerationServiceError(STAGE_GENERAL) from e

        if not isinstance(data, dict) or data.get("status") != "success":
            logger.error("Sightengine did not process image (status=%r)", data.get("status") if isinstance(data, dict) else None)
            raise ModerationServiceError(STAGE_GENERAL)
        return data

    def close(self) -> None:
        self._client.close()


class HiveClient:
    """Contraband / paraphernalia classifier (stage ``contraband``)."""

    def __init__(
        self,
        api_key: str,
        url: str = "https://api.thehive.ai/api/v3/hive/visual-moderation",
        timeout_seconds: float = 20.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    def moderate(self, image_url: str) -> dict[str, float]:
        try:
            resp = self._client.post(self.url, json={"input": [{"media_url": image_url}]})
            resp.raise_for_status()
            return contraband_scores(resp.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Hive request failed: %s", e)
            raise ModerationServiceError(STAGE_CONTRABAND) from e

    def close(self) -> None:
        self._client.close()


# ─────────────────────────────────────────────────────────────────────────────
# Gate
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Verdict:
    safe: bool
    stage: Optional[str] = None
    reason: Optional[str] = None
    signals: tuple[str, ...] = ()
    service_error: bool = False

    def raise_for_rejection(self) -> None:
        if self.safe:
            return
        if self.service_error:
            raise ModerationServiceError(self.stage)
        raise ModerationFlagged(self.stage, self.reason, list(self.signals))


SAFE = Verdict(safe=True)


def _rejected(stage: str, flagged: list[tuple[str, float]]) -> Verdict:
    return Verdict(
        safe=False,
        stage=stage,
        reason=describe_flags(flagged),
        signals=tuple(signal for signal, _ in flagged),
    )


class ModerationGate:
    def __init__(self, general: SightengineClient, contraband: HiveClient):
        self.general = general
        self.contraband = contraband

    def moderate(self, image_url: str) -> Verdict:
        """Run both stages in order, stopping at the first rejection."""
        try:
            general_payload = self.general.check(image_url)
        except ModerationServiceError:
            return Verdict(safe=False, stage=STAGE_GENERAL, reason="service error", service_error=True)

        flagged = flagged_signals(GENERAL_RULES, general_payload)
        if flagged:
            logger.info("Image %s rejected at %s stage: %s", image_url, STAGE_GENERAL, flagged)
            return _rejected(STAGE_GENERAL, flagged)

        try:
            scores = self.contraband.moderate(image_url)
        except ModerationServiceError:
            return Verdict(safe=False, stage=STAGE_CONTRABAND, reason="service error", service_error=True)

        flagged = flagged_signals(CONTRABAND_RULES, scores)
        if flagged:
            logger.info("Image %s rejected at %s stage: %s", image_url, STAGE_CONTRABAND, flagged)
            return _rejected(STAGE_CONTRABAND, flagged)

        return SAFE


def build_moderation_gate() -> ModerationGate:
    return ModerationGate(
        general=SightengineClient(
            api_user=settings.SIGHTENGINE_USER,
            api_secret=settings.SIGHTENGINE_SECRET,
            url=settings.SIGHTENGINE_API_URL,
            models=settings.SIGHTENGINE_MODELS,
            timeout_seconds=settings.MODERATION_TIMEOUT_SECONDS,
        ),
        contraband=HiveClient(
            api_key=settings.HIVE_API_KEY,
            url=settings.HIVE_API_URL,
            timeout_seconds=settings.MODERATION_TIMEOUT_SECONDS,
        ),
    )


@lru_cache
def get_moderation_gate() -> ModerationGate:
    """FastAPI dependency; tests override it with a fake."""
    return build_moderation_gate()
