"""ChordRecognizer: runs a recipe from signal to per-frame chord matches."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from chordfinder.chord_matcher import ChordEvent, ChordLibrary, ChordMatcher, MatchedFeatures
from chordfinder.config import Recipe
from chordfinder.feature_extractor import Signal, extract_pitch_features
from chordfinder.signal_filters import EqualLoudnessFilter
from chordfinder.vectors import ChromaBuffer, PitchBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class RecognitionResult:
    """
    Intermediate features and final matches of one recognition run.

    Attributes:
        pitch_features:  128-bin features straight from the extractor.
        chroma_features: 12-bin features after the variant's filters.
        matches:         Per-frame match results.
    """

    pitch_features: PitchBuffer
    chroma_features: ChromaBuffer
    matches: MatchedFeatures

    @property
    def feature_rate(self) -> float:
        return self.chroma_features.feature_rate

    def best_labels(self) -> list[str]:
        return [chord.name for chord, _score in self.matches.best_chords()]

    def events(self, min_duration: float = 0.0) -> list[ChordEvent]:
        return self.matches.events(min_duration)


class ChordRecognizer:
    """
    Signal -> pitch features -> chroma features -> chord matches.

    Usage:

        recognizer = ChordRecognizer(load_recipe("recipe.json"))
        result = recognizer.recognize(signal)
        for event in result.events(min_duration=0.5):
            print(event.start_time, event.name)
    """

    def __init__(self, recipe: Recipe | None = None, library: ChordLibrary | None = None) -> None:
        self.recipe = recipe if recipe is not None else Recipe()
        self.matcher = ChordMatcher(library, self.recipe.adjustments)

    def recognize(self, signal: Signal) -> RecognitionResult:
        """
        Raises:
            ConfigurationError: If the signal does not suit the recipe's
                                strategy (wrong or too low sample rate).
        """
        if self.recipe.equal_loudness:
            signal = EqualLoudnessFilter().apply(signal)

        pitches = extract_pitch_features(signal, self.recipe.strategy)
        chromas = self.recipe.variant.transform(pitches)
        logger.debug(
            "Extracted %d pitch frames, %d %s chroma frames at %.3f Hz",
            len(pitches), len(chromas), self.recipe.variant.name, chromas.feature_rate,
        )
        return RecognitionResult(pitches, chromas, self.matcher.match_buffer(chromas))
