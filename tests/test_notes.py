import math

import pytest

from lyre.theory.notes import (
    CHROMATIC_NOTES,
    NOTE_TABLE,
    build_note_table,
    frequency_of,
    nearest_note,
    pitch_class_index,
)


def test_a4_reference():
    assert frequency_of("A", 4) == 440.0


def test_known_frequencies():
    assert frequency_of("C", 4) == pytest.approx(261.63, abs=0.01)
    assert frequency_of("E", 2) == pytest.approx(82.41, abs=0.01)
    assert frequency_of("B", 5) == pytest.approx(987.77, abs=0.01)


@pytest.mark.parametrize("note", CHROMATIC_NOTES)
def test_octaves_double_exactly(note):
    for octave in range(1, 7):
        assert frequency_of(note, octave + 1) == 2.0 * frequency_of(note, octave)


def test_table_has_one_entry_per_semitone():
    assert len(NOTE_TABLE) == 12 * 5
    assert NOTE_TABLE[0].name == "C2"
    assert NOTE_TABLE[-1].name == "B6"
    freqs = [e.frequency for e in NOTE_TABLE]
    assert freqs == sorted(freqs)


def test_nearest_note_exact_entry_has_zero_cents():
    for entry in NOTE_TABLE:
        match = nearest_note(entry.frequency)
        assert match is not None
        assert (match.note, match.octave) == (entry.note, entry.octave)
        assert match.cents == 0.0


def test_nearest_note_reports_signed_cents():
    sharp = nearest_note(440.0 * 2 ** (10 / 1200))
    assert sharp.name == "A4"
    assert sharp.cents == pytest.approx(10.0)

    flat = nearest_note(440.0 * 2 ** (-30 / 1200))
    assert flat.name == "A4"
    assert flat.cents == pytest.approx(-30.0)


def test_nearest_note_moves_to_next_semitone_past_half_step():
    match = nearest_note(440.0 * 2 ** (60 / 1200))
    assert match.name == "A#4"
    assert match.cents == pytest.approx(-40.0)


@pytest.mark.parametrize("freq", [None, 0.0, -5.0, 30.0, 49.9, 2000.1, 5000.0, math.nan, math.inf])
def test_nearest_note_rejects_out_of_range(freq):
    assert nearest_note(freq) is None


def test_nearest_note_rejects_uncovered_low_band():
    # 55 Hz is A1; the default table starts at C2
    assert nearest_note(55.0) is None


def test_deviation_bounded_across_range():
    f = 64.0
    while f < 2000.0:
        match = nearest_note(f)
        assert match is not None
        assert -50.0 <= match.cents <= 50.0
        f *= 1.013


def test_custom_octave_range():
    match = nearest_note(55.0, min_octave=1, max_octave=3)
    assert match.name == "A1"
    assert len(build_note_table(1, 3)) == 36


def test_unknown_pitch_class():
    with pytest.raises(ValueError):
        pitch_class_index("H")
    with pytest.raises(ValueError):
        frequency_of("Db", 4)
