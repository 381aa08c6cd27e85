"""chordfinder CLI entry point."""

import logging
import sys

import click

from chordfinder import __version__
from chordfinder.audio_processor import AudioProcessor
from chordfinder.chord_matcher import default_adjustments
from chordfinder.chord_theory import PATTERN_LIBRARY, Chord, ChordPattern, Chroma
from chordfinder.config import Recipe, load_recipe
from chordfinder.errors import ChordFinderError
from chordfinder.feature_extractor import FilterbankStrategy, StftStrategy
from chordfinder.feature_filters import ChromaVariant
from chordfinder.recognizer import ChordRecognizer


def _build_recipe(strategy: str, variant: str, adjust: bool, pitch_correction: int | None) -> Recipe:
    """Recipe from the command-line shorthand options."""
    if strategy == "filterbank":
        extractor = FilterbankStrategy()
    else:
        extractor = StftStrategy(pitch_correction=pitch_correction)
    adjustments = default_adjustments() if adjust else ()
    return Recipe(extractor, ChromaVariant.named(variant), adjustments)


def _describe_chord(chord: Chord) -> None:
    click.echo(f"{chord.name}")
    click.echo(f"  Intervals : {', '.join(i.symbol for i in chord.pattern.intervals)}")
    click.echo(f"  Chromas   : {' '.join(str(c) for c in chord.chromas)}")
    click.echo(f"  Notes     : {chord.pattern.note_count}")


# ── CLI group ──────────────────────────────────────────────────────────────────

@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="chordfinder")
@click.option("--verbose", "-v", is_flag=True, help="Log pipeline details to stderr.")
def main(verbose: bool) -> None:
    """chordfinder: frame-by-frame chord recognition from audio."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")


# ── analyze subcommand ─────────────────────────────────────────────────────────

@main.command()
@click.argument("audio_file", type=click.Path(dir_okay=False))
@click.option(
    "--strategy",
    type=click.Choice(["stft", "filterbank"]),
    default="stft",
    show_default=True,
    help="Pitch feature extraction strategy.",
)
@click.option(
    "--variant",
    type=click.Choice(["cp", "cens", "crp"]),
    default="cp",
    show_default=True,
    help="Chroma feature variant.",
)
@click.option(
    "--recipe",
    default=None,
    metavar="PATH",
    help="JSON recipe; overrides --strategy, --variant and --adjust.",
)
@click.option(
    "--pitch-correction",
    type=int,
    default=None,
    metavar="N",
    help="STFT bin-to-pitch offset; defaults to -1 for power-of-two windows, else -2.",
)
@click.option("--adjust/--no-adjust", default=False, show_default=True,
              help="Apply the note-count, chord-root and energy-distribution heuristics.")
@click.option(
    "--min-duration",
    type=float,
    default=0.5,
    show_default=True,
    metavar="SECS",
    help="Drop chord runs shorter than this many seconds.",
)
@click.option(
    "--top",
    type=click.IntRange(0, 10),
    default=0,
    show_default=True,
    help="Also list the N best chords of every frame.",
)
def analyze(
    audio_file: str,
    strategy: str,
    variant: str,
    recipe: str | None,
    adjust: bool,
    pitch_correction: int | None,
    min_duration: float,
    top: int,
) -> None:
    """
    Recognise the chords in an audio file.

    AUDIO_FILE is any format librosa can decode.

    \b
    Examples:
      chordfinder analyze song.wav
      chordfinder analyze song.wav --strategy filterbank --variant cens
      chordfinder analyze song.wav --recipe recipe.json --min-duration 1.0
    """
    click.echo(f"chordfinder v{__version__}")
    click.echo(f"  File   : {audio_file}")

    try:
        chosen = load_recipe(recipe) if recipe else _build_recipe(strategy, variant, adjust, pitch_correction)
    except (ChordFinderError, OSError) as exc:
        click.echo(f"  ERROR: {exc}", err=True)
        sys.exit(1)
    click.echo(f"  Recipe : {chosen.strategy.name} / {chosen.variant.name}")
    click.echo()

    # ── Step 1: Load audio ──────────────────────────────────────────────
    click.echo("[1/3] Loading audio...")
    try:
        signal = AudioProcessor().load(audio_file)
    except OSError as exc:
        click.echo(f"  ERROR: {exc}", err=True)
        sys.exit(1)
    click.echo(f"      Signal : {len(signal)} samples ({signal.duration:.1f} s)")

    # ── Step 2: Extract and match ───────────────────────────────────────
    click.echo("[2/3] Extracting features and matching chords...")
    try:
        result = ChordRecognizer(chosen).recognize(signal)
    except ChordFinderError as exc:
        click.echo(f"  ERROR: {exc}", err=True)
        sys.exit(1)
    click.echo(f"      Frames : {len(result.matches)} at {result.feature_rate:.2f} Hz")

    # ── Step 3: Report ──────────────────────────────────────────────────
    click.echo("[3/3] Chord timeline:")
    chord_events = result.events(min_duration)
    if not chord_events:
        click.echo(
            "  WARNING: No chords detected. Try lowering --min-duration.",
            err=True,
        )
        sys.exit(1)

    for event in chord_events:
        bar = "=" * int(event.duration * 4)
        click.echo(f"  {event.start_time:7.2f}s  {event.name:<10}  {event.score:5.3f}  {bar}")

    if top:
        click.echo()
        click.echo(f"Top {top} per frame:")
        for frame, ranked in enumerate(result.matches.max_scores(top)):
            listing = ", ".join(f"{chord.name} {score:.3f}" for chord, score in ranked)
            click.echo(f"  {frame / result.feature_rate:7.2f}s  {listing}")


# ── chords subcommand ──────────────────────────────────────────────────────────

@main.command()
@click.argument("suffix", required=False)
@click.option("--root", default=None, metavar="NOTE", help="Root to spell the pattern on, e.g. 'E♭' or 'Eb'.")
def chords(suffix: str | None, root: str | None) -> None:
    """
    List the chord pattern library, or describe one pattern.

    SUFFIX may be written either way, e.g. 'm7♭5' or 'm7b5'.
    """
    if suffix is None:
        for pattern in PATTERN_LIBRARY:
            symbols = " ".join(i.symbol for i in pattern.intervals)
            click.echo(f"{pattern.suffix:<12} {pattern.canonical_suffix:<14} 1 {symbols}")
        return

    pattern = ChordPattern.from_suffix(suffix)
    if pattern is None:
        click.echo(f"  ERROR: Unknown chord suffix '{suffix}'", err=True)
        sys.exit(1)
    _describe_chord(Chord(Chroma.parse(root) if root else Chroma.C, pattern))


if __name__ == "__main__":
    main()
