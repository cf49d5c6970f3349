"""Identify which printed template a photo shows from its marker IDs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from texture_rectify.errors import IdentificationFailed

logger = logging.getLogger(__name__)

MARKERS_PER_MODEL = 4
DEFAULT_BASE_ID = 0
DEFAULT_QUORUM = 3


@dataclass(frozen=True)
class ModelMarkerRange:
    """A registered template owning IDs ``base_id .. base_id + 3`` (TL, TR, BR, BL)."""

    model_id: str
    base_id: int

    @property
    def marker_ids(self) -> Tuple[int, ...]:
        return tuple(range(self.base_id, self.base_id + MARKERS_PER_MODEL))


@dataclass(frozen=True)
class ModelIdentification:
    """Outcome of model identification."""

    model_id: Optional[str]
    base_id: int
    matched_ids: Tuple[int, ...]


def _matched(detected: set, base_id: int) -> Tuple[int, ...]:
    return tuple(sorted(detected.intersection(range(base_id, base_id + MARKERS_PER_MODEL))))


def identify_model(
    markers: Iterable,
    registered_models: Sequence[ModelMarkerRange],
    quorum: int = DEFAULT_QUORUM,
) -> ModelIdentification:
    """Match detected marker IDs against the registered templates.

    The first registered range with at least ``quorum`` of its four IDs
    present wins, in declaration order. If none does, the legacy default
    range 0..3 is tried and attributed to the first registered template.

    Note that first-match-wins is order dependent: two templates whose ranges
    both reach quorum on the same photo are ambiguous, and only the first is
    ever reported. Correctly printed templates never overlap like this.

    Args:
        markers: Detected markers (anything with an ``id`` attribute)
        registered_models: Templates in declaration order
        quorum: Minimum number of a template's IDs that must be present

    Returns:
        The identified model

    Raises:
        IdentificationFailed: If no range reaches quorum
    """
    detected = {int(marker.id) for marker in markers}

    identification = None
    for model in registered_models:
        matched = _matched(detected, model.base_id)
        if len(matched) < quorum:
            continue
        if identification is None:
            identification = ModelIdentification(model.model_id, model.base_id, matched)
            logger.info(
                f"Identified model {model.model_id} (base ID {model.base_id}): "
                f"{len(matched)}/{MARKERS_PER_MODEL} markers {list(matched)}"
            )
        else:
            logger.warning(
                f"Model {model.model_id} also reaches quorum with {list(matched)}; "
                f"keeping first match {identification.model_id}"
            )

    if identification is not None:
        return identification

    matched = _matched(detected, DEFAULT_BASE_ID)
    if len(matched) >= quorum:
        model_id = registered_models[0].model_id if registered_models else None
        logger.info(
            f"No registered range matched; default markers {list(matched)} "
            f"attributed to model {model_id}"
        )
        return ModelIdentification(model_id, DEFAULT_BASE_ID, matched)

    raise IdentificationFailed(
        f"No registered model reached quorum {quorum}/{MARKERS_PER_MODEL} "
        f"for detected marker IDs {sorted(detected)}",
        detected_ids=detected,
    )
