"""Chord theory model: chromas, intervals, chord patterns and chords."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Final

from chordfinder.errors import ChordParseError

logger = logging.getLogger(__name__)

# Display names of the twelve pitch classes (index 0 = C)
CHROMA_NAMES: Final[tuple[str, ...]] = (
    "C", "D♭", "D", "E♭", "E", "F", "G♭", "G", "A♭", "A", "B♭", "B",
)

_NATURAL_CHROMAS: Final[dict[str, int]] = {
    "C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11,
}
_ACCIDENTALS: Final[dict[str, int]] = {"": 0, "♭": -1, "b": -1, "♯": 1, "#": 1}

# Pitch that sounds at the 440 Hz reference
A4_PITCH: Final = 69
A4_FREQUENCY: Final = 440.0


# ── Chroma ────────────────────────────────────────────────────────────────────

class Chroma(IntEnum):
    """One of the twelve pitch classes, ordered by semitone above C."""

    C = 0
    D_FLAT = 1
    D = 2
    E_FLAT = 3
    E = 4
    F = 5
    G_FLAT = 6
    G = 7
    A_FLAT = 8
    A = 9
    B_FLAT = 10
    B = 11

    def __str__(self) -> str:
        return CHROMA_NAMES[self.value]

    def __format__(self, format_spec: str) -> str:
        # IntEnum would otherwise format as the bare number
        return format(str(self), format_spec)

    @classmethod
    def from_int(cls, value: int) -> Chroma:
        """Return the chroma for any integer, wrapping modulo 12."""
        return cls(value % 12)

    @classmethod
    def parse(cls, text: str) -> Chroma:
        """
        Parse a note name such as 'C', 'eb', 'F♯' or 'B♭'.

        Unrecognised text falls back to C.
        """
        text = text.strip()
        if text:
            natural = _NATURAL_CHROMAS.get(text[0].upper())
            accidental = _ACCIDENTALS.get(text[1:])
            if natural is not None and accidental is not None:
                return cls.from_int(natural + accidental)
        logger.warning("Unrecognised chroma %r, falling back to C", text)
        return cls.C

    def advanced(self, semitones: int) -> Chroma:
        """Move *semitones* around the circle of pitch classes."""
        return Chroma.from_int(self.value + semitones)

    def chroma_at(self, interval: Interval) -> Chroma:
        """Return the chroma that sits *interval* above this one."""
        return self.advanced(interval.semitones)


def chroma_of(pitch: int) -> Chroma:
    """Pitch class of a MIDI-style pitch number."""
    return Chroma(pitch % 12)


def frequency_for_pitch(pitch: float) -> float:
    """Equal-tempered centre frequency of *pitch* in Hz."""
    return A4_FREQUENCY * 2.0 ** ((pitch - A4_PITCH) / 12.0)


def pitch_for_frequency(frequency: float) -> int:
    """Nearest pitch number for *frequency* in Hz."""
    return int(round(A4_PITCH + 12.0 * math.log2(frequency / A4_FREQUENCY)))


# ── Interval ──────────────────────────────────────────────────────────────────

class Interval(IntEnum):
    """
    A chord tone above the root, encoded as a 2-bit field of a 24-bit mask.

    Scale degree k (2..13) owns bits 2*(k-2) and 2*(k-2)+1. Within a field the
    flat, natural and sharp spellings are 0b01, 0b10 and 0b11. The unison has
    code 0 and is implied by every pattern.
    """

    P1 = 0
    m2 = 1 << 0
    M2 = 2 << 0
    A2 = 3 << 0
    m3 = 1 << 2
    M3 = 2 << 2
    A3 = 3 << 2
    d4 = 1 << 4
    P4 = 2 << 4
    A4 = 3 << 4
    d5 = 1 << 6
    P5 = 2 << 6
    A5 = 3 << 6
    m6 = 1 << 8
    M6 = 2 << 8
    A6 = 3 << 8
    m7 = 1 << 10
    M7 = 2 << 10
    A7 = 3 << 10
    d8 = 1 << 12
    P8 = 2 << 12
    A8 = 3 << 12
    m9 = 1 << 14
    M9 = 2 << 14
    A9 = 3 << 14
    m10 = 1 << 16
    M10 = 2 << 16
    A10 = 3 << 16
    d11 = 1 << 18
    P11 = 2 << 18
    A11 = 3 << 18
    d12 = 1 << 20
    P12 = 2 << 20
    A12 = 3 << 20
    m13 = 1 << 22
    M13 = 2 << 22
    A13 = 3 << 22

    @property
    def degree(self) -> int:
        """Scale degree of the interval (1 for the unison)."""
        if self.value == 0:
            return 1
        return (self.value.bit_length() - 1) // 2 + 2

    @property
    def field_mask(self) -> int:
        """Both bits of this interval's degree field."""
        if self.value == 0:
            return 0
        return 0b11 << (2 * (self.degree - 2))

    @property
    def _field(self) -> int:
        if self.value == 0:
            return 0
        return self.value >> (2 * (self.degree - 2))

    @property
    def is_flat(self) -> bool:
        return self._field == 0b01

    @property
    def is_natural(self) -> bool:
        return self.value == 0 or self._field == 0b10

    @property
    def is_sharp(self) -> bool:
        return self._field == 0b11

    @property
    def semitones(self) -> int:
        """Distance above the root in semitones."""
        if self.value == 0:
            return 0
        return _NATURAL_SEMITONES[self.degree] + self._field - 2

    @property
    def symbol(self) -> str:
        """Degree with accidental, e.g. '♭3', '5' or '♯11'."""
        accidental = "♭" if self.is_flat else "♯" if self.is_sharp else ""
        return f"{accidental}{self.degree}"

    @classmethod
    def from_symbol(cls, symbol: str) -> Interval | None:
        """Inverse of :attr:`symbol`; accepts ASCII 'b' and '#' as well."""
        text = symbol.strip().replace("b", "♭").replace("#", "♯")
        for interval in cls:
            if interval.symbol == text:
                return interval
        return None

    @classmethod
    def from_semitones(cls, semitones: int) -> Interval | None:
        """
        Return an interval spanning *semitones*.

        Natural spellings win over flat ones and flat spellings over sharp
        ones, so 3 gives m3 rather than A2 and 6 gives d5 rather than A4.
        """
        candidates = [i for i in cls if i.semitones == semitones]
        if not candidates:
            return None
        candidates.sort(key=lambda i: (not i.is_natural, not i.is_flat))
        return candidates[0]


# Semitones of the natural spelling for degrees 2..13
_NATURAL_SEMITONES: Final[dict[int, int]] = {
    2: 2, 3: 4, 4: 5, 5: 7, 6: 9, 7: 11, 8: 12, 9: 14, 10: 16, 11: 17, 12: 19, 13: 21,
}


# ── Suffix spelling ───────────────────────────────────────────────────────────

_CANONICAL_CHARACTERS: Final[dict[str, str]] = {
    "♭": "b",
    "♯": "#",
    "╱": "-",
    "/": "-",
    "+": "aug",
    "°": "dim",
    "(": "_",
    ")": "_",
}


def canonical_suffix(suffix: str) -> str:
    """
    ASCII spelling of a chord suffix, e.g. 'm7♭5(♭9)' -> 'm7b5_b9_'.

    Substitutes character by character: ♭ -> b, ♯ -> #, ╱ or / -> -,
    + -> aug, ° -> dim and both parentheses -> _.
    """
    return "".join(_CANONICAL_CHARACTERS.get(ch, ch) for ch in suffix)


def presentational_suffix(suffix: str) -> str:
    """
    Display spelling of a chord suffix, e.g. 'm7b5_b9_' -> 'm7♭5(♭9)'.

    Underscores alternate between opening and closing parentheses.
    """
    text = (
        suffix.replace("aug", "+")
        .replace("dim", "°")
        .replace("b", "♭")
        .replace("#", "♯")
        .replace("-", "╱")
        .replace("/", "╱")
    )
    parts: list[str] = []
    opening = True
    for ch in text:
        if ch == "_":
            parts.append("(" if opening else ")")
            opening = not opening
        else:
            parts.append(ch)
    return "".join(parts)


# ── ChordPattern ──────────────────────────────────────────────────────────────

MASK_BITS: Final = 0xFFFFFF
UNKNOWN_SUFFIX: Final = "?"


@dataclass(frozen=True)
class ChordPattern:
    """
    A set of intervals above a root, stored as a 24-bit degree mask.

    Attributes:
        mask: Bitwise OR of the member intervals' codes.
    """

    mask: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "mask", self.mask & MASK_BITS)

    @classmethod
    def of(cls, *intervals: Interval) -> ChordPattern:
        mask = 0
        for interval in intervals:
            mask |= interval.value
        return cls(mask)

    @property
    def intervals(self) -> tuple[Interval, ...]:
        """Member intervals in ascending degree order, unison excluded."""
        found: list[Interval] = []
        for shift in range(0, 24, 2):
            field = self.mask & (0b11 << shift)
            if field:
                found.append(Interval(field))
        return tuple(found)

    @property
    def note_count(self) -> int:
        """
        Number of set mask bits plus one for the root.

        A sharp interval occupies both bits of its field and so counts twice.
        """
        return bin(self.mask).count("1") + 1

    def contains(self, interval: Interval) -> bool:
        if interval is Interval.P1:
            return True
        return (self.mask & interval.field_mask) == interval.value

    def __contains__(self, interval: Interval) -> bool:
        return self.contains(interval)

    @property
    def suffix(self) -> str:
        """Display suffix from the pattern library, or '?' when uncatalogued."""
        return _SUFFIX_BY_MASK.get(self.mask, UNKNOWN_SUFFIX)

    @property
    def canonical_suffix(self) -> str:
        return canonical_suffix(self.suffix)

    def __str__(self) -> str:
        return self.suffix

    @classmethod
    def from_suffix(cls, suffix: str) -> ChordPattern | None:
        """Look up a catalogued pattern by either suffix spelling."""
        return _PATTERN_BY_SUFFIX.get(presentational_suffix(suffix.strip()))

    @classmethod
    def parse_suffix(cls, suffix: str) -> ChordPattern:
        """Like :meth:`from_suffix`, but unknown suffixes give the major triad."""
        pattern = cls.from_suffix(suffix)
        if pattern is None:
            if suffix.strip():
                logger.warning("Unrecognised chord suffix %r, using major triad", suffix)
            return MAJOR_TRIAD
        return pattern


# ── Pattern library ───────────────────────────────────────────────────────────

I = Interval

_LIBRARY_SPEC: Final[tuple[tuple[str, tuple[Interval, ...]], ...]] = (
    ("°", (I.m3, I.d5)),
    ("(♭5)", (I.M3, I.d5)),
    ("5", (I.P5,)),
    ("sus2", (I.M2, I.P5)),
    ("m", (I.m3, I.P5)),
    ("m(add2)", (I.M2, I.m3, I.P5)),
    ("M", (I.M3, I.P5)),
    ("(add2)", (I.M2, I.M3, I.P5)),
    ("sus4", (I.P4, I.P5)),
    ("m(♯5)", (I.m3, I.A5)),
    ("+", (I.M3, I.A5)),
    ("°7", (I.m3, I.d5, I.M6)),
    ("m6", (I.m3, I.P5, I.M6)),
    ("6", (I.M3, I.P5, I.M6)),
    ("m7♭5", (I.m3, I.d5, I.m7)),
    ("7♭5", (I.M3, I.d5, I.m7)),
    ("m7", (I.m3, I.P5, I.m7)),
    ("7", (I.M3, I.P5, I.m7)),
    ("7sus4", (I.P4, I.P5, I.m7)),
    ("m7(add4)", (I.m3, I.P4, I.P5, I.m7)),
    ("7♯5", (I.M3, I.A5, I.m7)),
    ("°7(M7)", (I.m3, I.d5, I.M7)),
    ("M7♭5", (I.M3, I.d5, I.M7)),
    ("m(M7)", (I.m3, I.P5, I.M7)),
    ("M7", (I.M3, I.P5, I.M7)),
    ("M7♯5", (I.M3, I.A5, I.M7)),
    ("m7♭5(♭9)", (I.m3, I.d5, I.m7, I.m9)),
    ("7♭5(♭9)", (I.M3, I.d5, I.m7, I.m9)),
    ("7♭9", (I.M3, I.P5, I.m7, I.m9)),
    ("7♯5(♭9)", (I.M3, I.A5, I.m7, I.m9)),
    ("°7(add9)", (I.m3, I.d5, I.M6, I.M9)),
    ("m6╱9", (I.m3, I.P5, I.M6, I.M9)),
    ("6╱9", (I.M3, I.P5, I.M6, I.M9)),
    ("m9(♭5)", (I.m3, I.d5, I.m7, I.M9)),
    ("9(♭5)", (I.M3, I.d5, I.m7, I.M9)),
    ("m9", (I.m3, I.P5, I.m7, I.M9)),
    ("9", (I.M3, I.P5, I.m7, I.M9)),
    ("9♯5", (I.M3, I.A5, I.m7, I.M9)),
    ("M9♭5", (I.M3, I.d5, I.M7, I.M9)),
    ("m9(M7)", (I.m3, I.P5, I.M7, I.M9)),
    ("M9", (I.M3, I.P5, I.M7, I.M9)),
    ("M9♯5", (I.M3, I.A5, I.M7, I.M9)),
    ("M6╱9", (I.M3, I.P5, I.M6, I.M7, I.M9)),
    ("7♭5(♯9)", (I.M3, I.d5, I.m7, I.A9)),
    ("7♯9", (I.M3, I.P5, I.m7, I.A9)),
    ("7♯5(♯9)", (I.M3, I.A5, I.m7, I.A9)),
    ("m7(add11)", (I.m3, I.P5, I.m7, I.P11)),
    ("m11♭5", (I.m3, I.d5, I.m7, I.M9, I.P11)),
    ("11", (I.P5, I.m7, I.M9, I.P11)),
    ("m11", (I.m3, I.P5, I.m7, I.M9, I.P11)),
    ("m11(M7)", (I.m3, I.P5, I.M7, I.M9, I.P11)),
    ("7♯11", (I.M3, I.P5, I.m7, I.A11)),
    ("M7♯11", (I.M3, I.P5, I.M7, I.A11)),
    ("7♭9(♯11)", (I.M3, I.P5, I.m7, I.m9, I.A11)),
    ("9♯11", (I.M3, I.P5, I.m7, I.M9, I.A11)),
    ("M9♯11", (I.M3, I.P5, I.M7, I.M9, I.A11)),
    ("7♯9(♯11)", (I.M3, I.P5, I.m7, I.A9, I.A11)),
    ("7♭13", (I.M3, I.P5, I.m7, I.m13)),
    ("7♭9(♭13)", (I.M3, I.P5, I.m7, I.m9, I.m13)),
    ("9♭13", (I.M3, I.P5, I.m7, I.M9, I.m13)),
    ("7♯9(♭13)", (I.M3, I.P5, I.m7, I.A9, I.m13)),
    ("7♯11(♭13)", (I.M3, I.P5, I.m7, I.A11, I.m13)),
    ("9♯11(♭13)", (I.M3, I.P5, I.m7, I.M9, I.A11, I.m13)),
    ("7(add13)", (I.M3, I.P5, I.m7, I.M13)),
    ("13♭9", (I.M3, I.P5, I.m7, I.m9, I.M13)),
    ("13♭5", (I.M3, I.d5, I.m7, I.M9, I.M13)),
    ("13", (I.M3, I.P5, I.m7, I.M9, I.M13)),
    ("13(sus4)", (I.P4, I.P5, I.m7, I.M9, I.M13)),
    ("M13♭5", (I.M3, I.d5, I.M7, I.M9, I.M13)),
    ("M13", (I.M3, I.P5, I.M7, I.M9, I.M13)),
    ("13♯9", (I.M3, I.P5, I.m7, I.A9, I.M13)),
    ("m13", (I.m3, I.P5, I.m7, I.M9, I.P11, I.M13)),
    ("13♯11", (I.M3, I.P5, I.m7, I.M9, I.A11, I.M13)),
    ("M13♯11", (I.M3, I.P5, I.M7, I.M9, I.A11, I.M13)),
)

del I

PATTERN_LIBRARY: Final[tuple[ChordPattern, ...]] = tuple(
    ChordPattern.of(*intervals) for _suffix, intervals in _LIBRARY_SPEC
)

_SUFFIX_BY_MASK: dict[int, str] = {}
_PATTERN_BY_SUFFIX: dict[str, ChordPattern] = {}
for _suffix, _pattern in zip((s for s, _ in _LIBRARY_SPEC), PATTERN_LIBRARY):
    _SUFFIX_BY_MASK.setdefault(_pattern.mask, _suffix)
    _PATTERN_BY_SUFFIX[_suffix] = _pattern
del _suffix, _pattern

MAJOR_TRIAD: Final = ChordPattern.of(Interval.M3, Interval.P5)
MINOR_TRIAD: Final = ChordPattern.of(Interval.m3, Interval.P5)


# ── Chord ─────────────────────────────────────────────────────────────────────

_CHORD_NAME = re.compile(r"^([A-Ga-g](?:♭|♯|b|#)?)(.*)$")


@dataclass(frozen=True)
class Chord:
    """
    A chord pattern placed on a root.

    Attributes:
        root:    Pitch class of the root.
        pattern: Intervals stacked above the root.
    """

    root: Chroma
    pattern: ChordPattern

    @property
    def chromas(self) -> tuple[Chroma, ...]:
        """Root first, then the chroma of each interval in ascending order."""
        return (self.root,) + tuple(self.root.chroma_at(i) for i in self.pattern.intervals)

    @property
    def critical_chromas(self) -> tuple[Chroma, ...]:
        """Chord chromas without the perfect fifth, which is often omitted."""
        chromas = list(self.chromas)
        if self.pattern.contains(Interval.P5):
            chromas.remove(self.root.chroma_at(Interval.P5))
        return tuple(chromas)

    def __getitem__(self, interval: Interval) -> Chroma | None:
        if interval is Interval.P1:
            return self.root
        if self.pattern.contains(interval):
            return self.root.chroma_at(interval)
        return None

    def interval_for(self, chroma: Chroma) -> Interval | None:
        """The interval at which *chroma* occurs in this chord, if any."""
        if chroma == self.root:
            return Interval.P1
        for interval in self.pattern.intervals:
            if self.root.chroma_at(interval) == chroma:
                return interval
        return None

    @property
    def name(self) -> str:
        return f"{self.root}{self.pattern.suffix}"

    def __str__(self) -> str:
        return self.name

    @classmethod
    def parse(cls, text: str) -> Chord:
        """
        Lenient parse of a chord name such as 'Am7' or 'D♭M9'.

        Unparseable text yields C major and an unknown suffix yields a major
        triad on the parsed root.
        """
        match = _CHORD_NAME.match(text.strip())
        if match is None:
            logger.warning("Unrecognised chord %r, falling back to C major", text)
            return cls(Chroma.C, MAJOR_TRIAD)
        root, suffix = match.groups()
        return cls(Chroma.parse(root), ChordPattern.parse_suffix(suffix))

    @classmethod
    def from_name(cls, text: str) -> Chord:
        """
        Strict parse of a chord name.

        A bare root is read as its major triad.

        Raises:
            ChordParseError: If the root or the suffix is not recognised.
        """
        match = _CHORD_NAME.match(text.strip())
        if match is None:
            raise ChordParseError(f"Not a chord name: {text!r}")
        root, suffix = match.groups()
        if not suffix:
            return cls(Chroma.parse(root), MAJOR_TRIAD)
        pattern = ChordPattern.from_suffix(suffix)
        if pattern is None:
            raise ChordParseError(f"Unknown chord suffix {suffix!r} in {text!r}")
        return cls(Chroma.parse(root), pattern)
