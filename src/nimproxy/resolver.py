"""Model resolution: static mapping, live probe, then tier heuristics."""

import enum
import logging
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict

from .backends import BackendClient
from .config import Settings

logger = logging.getLogger(__name__)


class Tier(str, enum.Enum):
    LARGE = "large"
    MEDIUM = "medium"
    SMALL = "small"


# Checked in order, first match wins; anything else is SMALL
TIER_KEYWORDS = (
    (Tier.LARGE, ("gpt-4", "claude-opus", "405b")),
    (Tier.MEDIUM, ("claude", "gemini", "70b")),
)


class Mapped(BaseModel):
    """Found in the static model mapping."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["mapped"] = "mapped"
    requested: str
    backend_model: str


class Probed(BaseModel):
    """Not mapped, but the backend accepted the id as-is."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["probed"] = "probed"
    requested: str
    backend_model: str


class Heuristic(BaseModel):
    """Fell through to the default model of a tier."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["heuristic"] = "heuristic"
    requested: str
    backend_model: str
    tier: Tier


Resolution = Union[Mapped, Probed, Heuristic]


def classify_tier(model: str) -> Tier:
    """Classify a model name into a default tier by case-insensitive substring."""
    name = model.lower()
    for tier, keywords in TIER_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return tier
    return Tier.SMALL


class ModelResolver:
    """
    Maps a requested model id to exactly one backend model id.

    Resolution never fails: an unknown id is probed against the backend once,
    and if the backend does not accept it a tier default is used.
    """

    def __init__(self, settings: Settings, backend: BackendClient):
        self.settings = settings
        self.backend = backend

    async def resolve(
        self, requested: str, authorization: Optional[str] = None
    ) -> Resolution:
        mapped = self.settings.model_mapping.get(requested)
        if mapped:
            logger.info(f"Model {requested} mapped to {mapped}")
            return Mapped(requested=requested, backend_model=mapped)

        if await self.backend.probe(requested, authorization):
            logger.info(f"Model {requested} accepted by backend as-is")
            return Probed(requested=requested, backend_model=requested)

        tier = classify_tier(requested)
        backend_model = getattr(self.settings.fallback_models, tier.value)
        logger.info(
            f"Model {requested} unknown to backend, using {tier.value} tier default {backend_model}"
        )
        return Heuristic(requested=requested, backend_model=backend_model, tier=tier)
