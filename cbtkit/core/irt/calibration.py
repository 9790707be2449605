"""
Item calibration: fit item parameters from a response matrix and build a pool.

This is the "fit item parameters first" step that precedes assembly or
adaptive testing when only response data are available. Estimation is
delegated to girth's Marginal Maximum Likelihood routines; this module owns
the translation to and from girth's matrix layout and the data checks.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, TypedDict

import girth
import numpy as np

from cbtkit.core.errors import CalibrationError
from cbtkit.models.pool import Item, ItemId, ItemPool

logger = logging.getLogger(__name__)

# Minimum data requirements for stable MML estimation
MIN_ITEMS_FOR_CALIBRATION = 3
MIN_EXAMINEES_FOR_CALIBRATION = 50
MIN_RESPONSES_PER_ITEM = 30
MAX_SPARSITY_THRESHOLD = 0.95

SUPPORTED_MODELS = ("1pl", "2pl", "3pl")


class ItemCalibrationResult(TypedDict):
    """Calibrated parameters for one item."""

    discrimination: float
    difficulty: float
    guessing: float


def _build_response_matrix(
    responses: Sequence[Mapping[str, Any]],
) -> tuple:
    """
    Arrange response records into girth's [n_items x n_examinees] layout.

    Records need ``examinee_id``, ``item_id`` and ``is_correct``; unobserved
    cells hold ``girth.INVALID_RESPONSE``.
    """
    examinee_ids = sorted({r["examinee_id"] for r in responses}, key=str)
    item_ids = sorted({r["item_id"] for r in responses}, key=str)
    item_to_idx = {item_id: i for i, item_id in enumerate(item_ids)}
    examinee_to_idx = {eid: j for j, eid in enumerate(examinee_ids)}

    matrix = np.full((len(item_ids), len(examinee_ids)), girth.INVALID_RESPONSE, dtype=int)
    for r in responses:
        matrix[item_to_idx[r["item_id"]], examinee_to_idx[r["examinee_id"]]] = (
            1 if r["is_correct"] else 0
        )
    return item_ids, examinee_ids, matrix


def calibrate_items(
    responses: Sequence[Mapping[str, Any]],
    model: str = "2pl",
) -> Dict[ItemId, ItemCalibrationResult]:
    """
    Calibrate items with Marginal Maximum Likelihood.

    Args:
        responses: Response records with ``examinee_id``, ``item_id`` and
            ``is_correct``.
        model: ``"1pl"``, ``"2pl"`` or ``"3pl"``.

    Returns:
        Mapping of item id to calibrated parameters. Items with fewer than
        MIN_RESPONSES_PER_ITEM observed responses are left out.

    Raises:
        CalibrationError: On insufficient or too sparse data, or when the
            estimation itself fails.
    """
    if model not in SUPPORTED_MODELS:
        raise CalibrationError(
            "Unsupported calibration model", context={"model": model, "supported": SUPPORTED_MODELS}
        )
    if not responses:
        raise CalibrationError("No responses provided for calibration", context={"n_responses": 0})

    item_ids, examinee_ids, matrix = _build_response_matrix(responses)

    if len(item_ids) < MIN_ITEMS_FOR_CALIBRATION:
        raise CalibrationError(
            f"At least {MIN_ITEMS_FOR_CALIBRATION} items required for calibration",
            context={"n_items": len(item_ids)},
        )
    if len(examinee_ids) < MIN_EXAMINEES_FOR_CALIBRATION:
        raise CalibrationError(
            f"At least {MIN_EXAMINEES_FOR_CALIBRATION} examinees required for calibration",
            context={"n_examinees": len(examinee_ids)},
        )

    observed = matrix != girth.INVALID_RESPONSE
    sparsity = 1.0 - observed.sum() / matrix.size
    logger.info(
        f"Response matrix: {len(item_ids)} items x {len(examinee_ids)} examinees, "
        f"sparsity={sparsity:.1%}"
    )
    if sparsity > MAX_SPARSITY_THRESHOLD:
        raise CalibrationError(
            "Response matrix too sparse for reliable calibration",
            context={"sparsity": f"{sparsity:.1%}"},
        )

    keep = observed.sum(axis=1) >= MIN_RESPONSES_PER_ITEM
    if not np.any(keep):
        raise CalibrationError(
            "No items have sufficient responses for calibration",
            context={"min_required": MIN_RESPONSES_PER_ITEM},
        )
    kept_ids = [item_id for item_id, k in zip(item_ids, keep) if k]
    if len(kept_ids) < len(item_ids):
        logger.warning(
            f"Filtered {len(item_ids) - len(kept_ids)} items with "
            f"< {MIN_RESPONSES_PER_ITEM} responses; {len(kept_ids)} items remain"
        )
    filtered = matrix[keep]

    try:
        logger.info(f"Running {model.upper()} MML calibration: {len(kept_ids)} items")
        if model == "1pl":
            result = girth.rasch_mml(filtered)
        elif model == "2pl":
            result = girth.twopl_mml(filtered)
        else:
            result = girth.threepl_mml(filtered)
    except Exception as e:
        raise CalibrationError(
            f"{model.upper()} MML estimation failed",
            original_error=e,
            context={"n_items": len(kept_ids), "n_examinees": len(examinee_ids)},
        ) from e

    difficulty = np.atleast_1d(np.asarray(result["Difficulty"], dtype=float)).ravel()
    discrimination = np.broadcast_to(
        np.asarray(result["Discrimination"], dtype=float), difficulty.shape
    )
    guessing = np.broadcast_to(
        np.asarray(result.get("Guessing", 0.0), dtype=float), difficulty.shape
    )

    calibrated: Dict[ItemId, ItemCalibrationResult] = {}
    for idx, item_id in enumerate(kept_ids):
        calibrated[item_id] = {
            "discrimination": float(discrimination[idx]),
            "difficulty": float(difficulty[idx]),
            "guessing": float(guessing[idx]),
        }

    logger.info(
        f"Calibration complete: {len(calibrated)} items, "
        f"mean b={np.mean(difficulty):.2f}, mean a={np.mean(discrimination):.2f}"
    )
    return calibrated


def build_pool(
    calibration: Mapping[ItemId, ItemCalibrationResult],
    attributes: Optional[Mapping[ItemId, Mapping[str, Any]]] = None,
    scaling_constant: Optional[float] = None,
) -> ItemPool:
    """
    Turn calibration results into an ItemPool.

    girth reports discrimination on the logistic metric (no D). Pass the
    response model's scaling constant to rescale onto the normal-ogive metric
    the pool uses.
    """
    attributes = attributes or {}
    scale = 1.0 if scaling_constant is None else 1.0 / scaling_constant
    items: List[Item] = []
    for item_id, params in calibration.items():
        items.append(
            Item(
                id=item_id,
                a=params["discrimination"] * scale,
                b=params["difficulty"],
                c=max(0.0, params["guessing"]),
                attributes=attributes.get(item_id, {}),
            )
        )
    return ItemPool(items)
