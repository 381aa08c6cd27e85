"""Unit tests for recipe parsing and loading."""

import json
from pathlib import Path

import pytest

from chordfinder.chord_matcher import ChordRootAdjustment, NoteCountAdjustment
from chordfinder.config import Recipe, load_recipe, parse_filters, recipe_from_mapping
from chordfinder.errors import ConfigurationError
from chordfinder.feature_extractor import FilterbankStrategy, Representation, StftStrategy
from chordfinder.feature_filters import (
    CoefficientRange,
    Compression,
    DecibelConversion,
    Normalization,
    NormalizationMode,
    NormSpace,
    Quantization,
    Smoothing,
)


def test_empty_mapping_gives_defaults() -> None:
    recipe = recipe_from_mapping({})
    assert isinstance(recipe.strategy, StftStrategy)
    assert recipe.strategy.window_size == 8192
    assert recipe.strategy.hop_size == 4410
    assert recipe.variant.name == "cp"
    assert recipe.adjustments == ()
    assert recipe.equal_loudness is False


def test_recipe_dataclass_defaults() -> None:
    recipe = Recipe()
    assert recipe.strategy.name == "stft"
    assert recipe.variant.name == "cp"


def test_stft_strategy_accepts_camel_case() -> None:
    recipe = recipe_from_mapping(
        {
            "strategy": {
                "stft": {
                    "windowSize": 4096,
                    "hopSize": 2048,
                    "representation": "power",
                    "pitchCorrection": 0,
                }
            }
        }
    )
    strategy = recipe.strategy
    assert isinstance(strategy, StftStrategy)
    assert strategy.window_size == 4096
    assert strategy.hop_size == 2048
    assert strategy.representation is Representation.POWER
    assert strategy.pitch_correction == 0


def test_filterbank_strategy_by_name() -> None:
    recipe = recipe_from_mapping({"strategy": "filterbank"})
    assert isinstance(recipe.strategy, FilterbankStrategy)
    assert recipe.strategy.hop_size == 2205


def test_named_variant() -> None:
    recipe = recipe_from_mapping({"variant": "cens", "equalLoudness": True})
    assert recipe.variant.name == "cens"
    assert recipe.equal_loudness is True


def test_filters_split_into_pitch_and_chroma_stages() -> None:
    variant = parse_filters(
        [
            {"compression": {"factor": 1000}},
            {"coefficientRange": {"lower": 55, "upper": 120}},
            "normalization",
            {"smoothing": {"windowSize": 41, "downsampleFactor": 10}},
        ]
    )
    assert variant.name == "custom"
    assert variant.pitch_filters.filters == (Compression(factor=1000), CoefficientRange(55, 120))
    assert variant.chroma_filters.filters == (Normalization.lp_norm(), Smoothing(41, 10))


def test_pitch_stage_filters_after_chroma_filters_run_on_chroma() -> None:
    variant = parse_filters(["normalization", {"decibel": {"multiplier": "amplitude"}}])
    assert len(variant.pitch_filters) == 0
    assert isinstance(variant.chroma_filters.filters[1], DecibelConversion)


def test_normalization_forms() -> None:
    variant = parse_filters(
        [
            {"normalization": "max_value"},
            {"normalization": {"lp_norm": {"space": "l1", "threshold": 0.01}}},
        ]
    )
    max_value, lp_norm = variant.chroma_filters.filters
    assert max_value.mode is NormalizationMode.MAX_VALUE
    assert lp_norm.space is NormSpace.L1
    assert lp_norm.threshold == 0.01


def test_quantization_lists_become_tuples() -> None:
    variant = parse_filters([{"quantization": {"steps": [0.3, 0.1], "weights": [0.5, 0.25]}}])
    assert variant.chroma_filters.filters == (Quantization(steps=(0.1, 0.3), weights=(0.25, 0.5)),)


def test_score_adjustments() -> None:
    recipe = recipe_from_mapping(
        {"scoreAdjustments": ["note_count", {"chordRoot": {"matchBonus": 0.3}}]}
    )
    assert recipe.adjustments == (NoteCountAdjustment(), ChordRootAdjustment(match_bonus=0.3))


@pytest.mark.parametrize(
    "mapping",
    [
        {"tempo": 120},
        {"strategy": "cqt"},
        {"strategy": {"stft": {"windowLength": 4096}}},
        {"strategy": {"stft": {"windowSize": 1024, "hopSize": 1024}}},
        {"strategy": {"stft": 4096}},
        {"filters": "cp"},
        {"filters": ["reverb"]},
        {"filters": [{"smoothing": {"windowSize": 0}}]},
        {"filters": ["normalization", "coefficient_range"]},
        {"filters": [{"normalization": "l3"}]},
        {"filters": [{"compression": {}, "smoothing": {}}]},
        {"filters": [], "variant": "cp"},
        {"variant": "hpcp"},
        {"variant": 3},
        {"equalLoudness": "yes"},
        {"scoreAdjustments": ["tempo"]},
        {"scoreAdjustments": "note_count"},
    ],
)
def test_invalid_recipes_are_rejected(mapping: dict) -> None:
    with pytest.raises(ConfigurationError):
        recipe_from_mapping(mapping)


def test_recipe_must_be_a_mapping() -> None:
    with pytest.raises(ConfigurationError):
        recipe_from_mapping(["stft"])  # type: ignore[arg-type]


def test_load_recipe(tmp_path: Path) -> None:
    path = tmp_path / "recipe.json"
    path.write_text(json.dumps({"strategy": "filterbank", "variant": "crp"}), encoding="utf-8")
    recipe = load_recipe(path)
    assert recipe.strategy.name == "filterbank"
    assert recipe.variant.name == "crp"


def test_load_recipe_rejects_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "recipe.json"
    path.write_text("{strategy: stft", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_recipe(path)


def test_load_recipe_missing_file(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        load_recipe(tmp_path / "missing.json")
