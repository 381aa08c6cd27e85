"""Recognition recipes: typed configuration and parsing from plain mappings."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Final, Mapping

from chordfinder.chord_matcher import (
    ChordRootAdjustment,
    EnergyDistributionAdjustment,
    NoteCountAdjustment,
    ScoreAdjustment,
)
from chordfinder.errors import ConfigurationError
from chordfinder.feature_extractor import ExtractionStrategy, FilterbankStrategy, StftStrategy
from chordfinder.feature_filters import (
    ChromaVariant,
    CoefficientRange,
    Compression,
    DecibelConversion,
    FeatureFilter,
    Normalization,
    Quantization,
    Smoothing,
)

logger = logging.getLogger(__name__)

RECIPE_KEYS: Final = frozenset({"strategy", "filters", "variant", "score_adjustments", "equal_loudness"})

STRATEGIES: Final[dict[str, Callable[..., ExtractionStrategy]]] = {
    "stft": StftStrategy,
    "filterbank": FilterbankStrategy,
}

ADJUSTMENTS: Final[dict[str, Callable[..., ScoreAdjustment]]] = {
    "note_count": NoteCountAdjustment,
    "chord_root": ChordRootAdjustment,
    "energy_distribution": EnergyDistributionAdjustment,
}


@dataclass(frozen=True)
class Recipe:
    """
    Everything needed to run recognition over a signal.

    Attributes:
        strategy:       Pitch feature extraction strategy.
        variant:        Filters turning pitch features into chroma features.
        adjustments:    Score adjustments applied by the matcher.
        equal_loudness: Pre-filter the signal with the equal-loudness curve.
    """

    strategy: ExtractionStrategy = field(default_factory=StftStrategy)
    variant: ChromaVariant = field(default_factory=ChromaVariant.cp)
    adjustments: tuple[ScoreAdjustment, ...] = ()
    equal_loudness: bool = False


# ------------------------------------------------------------------
# Private helpers
# ------------------------------------------------------------------

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def _snake(key: str) -> str:
    """'windowSize' -> 'window_size'; snake_case keys pass through."""
    return _CAMEL_BOUNDARY.sub(r"_\1", key).lower()


def _entry(item: Any, what: str) -> tuple[str, Any]:
    """Split a one-key mapping (or a bare name) into (name, parameters)."""
    if isinstance(item, str):
        return _snake(item), {}
    if isinstance(item, Mapping) and len(item) == 1:
        (name, params), = item.items()
        return _snake(str(name)), {} if params is None else params
    raise ConfigurationError(f"Each {what} must be a name or a single-key mapping, got {item!r}")


def _construct(factory: Callable[..., Any], params: Any, what: str) -> Any:
    """Call *factory* with snake-cased keyword parameters."""
    if not isinstance(params, Mapping):
        raise ConfigurationError(f"Parameters for {what} must be a mapping, got {params!r}")
    kwargs = {_snake(str(k)): v for k, v in params.items()}
    try:
        return factory(**kwargs)
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid parameters for {what}: {exc}") from exc


def _parse_normalization(params: Any) -> Normalization:
    name, inner = _entry(params, "normalization") if params else ("lp_norm", {})
    if name == "max_value":
        return Normalization.max_value()
    if name == "lp_norm":
        return _construct(Normalization.lp_norm, inner, "lp_norm normalization")
    raise ConfigurationError(f"Unknown normalization {name!r}")


def _parse_quantization(**params: Any) -> Quantization:
    for key in ("steps", "weights"):
        if key in params:
            params[key] = tuple(params[key])
    return Quantization(**params)


FILTERS: Final[dict[str, Callable[..., FeatureFilter]]] = {
    "compression": Compression,
    "quantization": _parse_quantization,
    "smoothing": Smoothing,
    "decibel": DecibelConversion,
    "coefficient_range": CoefficientRange,
}


def _parse_filter(item: Any) -> FeatureFilter:
    name, params = _entry(item, "filter")
    if name == "normalization":
        return _parse_normalization(params)
    factory = FILTERS.get(name)
    if factory is None:
        raise ConfigurationError(f"Unknown filter {name!r}")
    return _construct(factory, params, f"{name} filter")


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------

def parse_strategy(item: Any) -> ExtractionStrategy:
    name, params = _entry(item, "strategy")
    factory = STRATEGIES.get(name)
    if factory is None:
        raise ConfigurationError(f"Unknown extraction strategy {name!r}")
    return _construct(factory, params, f"{name} strategy")


def parse_filters(items: Any) -> ChromaVariant:
    """
    Build a custom variant from an ordered filter list.

    Leading filters that can run on pitch features (compression, decibel and
    coefficient_range) run before chroma reduction; the rest run after it.

    Raises:
        ConfigurationError: On unknown filters, bad parameters, or a
                            coefficient_range placed after a chroma-only filter.
    """
    if not isinstance(items, list):
        raise ConfigurationError(f"'filters' must be a list, got {items!r}")
    pitch_filters: list[FeatureFilter] = []
    chroma_filters: list[FeatureFilter] = []
    for item in items:
        feature_filter = _parse_filter(item)
        if feature_filter.PITCH_STAGE and not chroma_filters:
            pitch_filters.append(feature_filter)
        elif isinstance(feature_filter, CoefficientRange):
            raise ConfigurationError("coefficient_range must come before any chroma filter")
        else:
            chroma_filters.append(feature_filter)
    return ChromaVariant.custom(pitch_filters, chroma_filters)


def parse_adjustments(items: Any) -> tuple[ScoreAdjustment, ...]:
    if not isinstance(items, list):
        raise ConfigurationError(f"'score_adjustments' must be a list, got {items!r}")
    adjustments: list[ScoreAdjustment] = []
    for item in items:
        name, params = _entry(item, "score adjustment")
        factory = ADJUSTMENTS.get(name)
        if factory is None:
            raise ConfigurationError(f"Unknown score adjustment {name!r}")
        adjustments.append(_construct(factory, params, f"{name} adjustment"))
    return tuple(adjustments)


def recipe_from_mapping(mapping: Mapping[str, Any]) -> Recipe:
    """
    Parse a recipe from a mapping such as a decoded JSON object.

    Keys may be given in snake_case or camelCase. Missing sections fall back
    to the Recipe defaults.

    Raises:
        ConfigurationError: For unknown keys, wrong types or invalid values.
    """
    if not isinstance(mapping, Mapping):
        raise ConfigurationError(f"A recipe must be a mapping, got {type(mapping).__name__}")
    options = {_snake(str(k)): v for k, v in mapping.items()}
    unknown = set(options) - RECIPE_KEYS
    if unknown:
        raise ConfigurationError(f"Unknown recipe keys: {', '.join(sorted(unknown))}")

    recipe = Recipe()
    if "strategy" in options:
        recipe = Recipe(parse_strategy(options["strategy"]), recipe.variant)
    if "filters" in options:
        if "variant" in options:
            raise ConfigurationError("Give either 'filters' or 'variant', not both")
        variant = parse_filters(options["filters"])
    elif "variant" in options:
        if not isinstance(options["variant"], str):
            raise ConfigurationError(f"'variant' must be a name, got {options['variant']!r}")
        variant = ChromaVariant.named(options["variant"])
    else:
        variant = recipe.variant

    equal_loudness = options.get("equal_loudness", False)
    if not isinstance(equal_loudness, bool):
        raise ConfigurationError(f"'equal_loudness' must be true or false, got {equal_loudness!r}")

    adjustments = parse_adjustments(options.get("score_adjustments", []))
    logger.debug("Parsed recipe: %s strategy, %s variant, %d adjustments",
                 recipe.strategy.name, variant.name, len(adjustments))
    return Recipe(recipe.strategy, variant, adjustments, equal_loudness)


def load_recipe(path: str | Path) -> Recipe:
    """
    Read a recipe from a JSON file.

    Raises:
        OSError: If the file cannot be read.
        ConfigurationError: If it is not valid JSON or not a valid recipe.
    """
    text = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Recipe {path} is not valid JSON: {exc}") from exc
    return recipe_from_mapping(data)
