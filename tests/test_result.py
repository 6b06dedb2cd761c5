"""Tests for TimestampedResult word grouping and chunk merging."""
import pytest

from nano_asr.result import TimestampedResult, WordTimestamp, combine_results


def test_words_grouping():
    result = TimestampedResult(
        text='hello world',
        tokens=[' hel', 'lo', ' world'],
        timestamps=[0.0, 0.08, 0.32],
    )
    assert result.words() == [
        WordTimestamp('hello', 0.0, 0.32),
        WordTimestamp('world', 0.32, 0.32),
    ]


def test_words_first_token_without_space():
    result = TimestampedResult(text='ab c', tokens=['a', 'b', ' c'], timestamps=[0.1, 0.2, 0.5])
    assert [w.word for w in result.words()] == ['ab', 'c']


def test_words_without_tokens():
    assert TimestampedResult(text='whisper text').words() == []


def test_combine_results_shifts_timestamps():
    merged = combine_results(
        [
            TimestampedResult('hello', [' hello'], [0.5]),
            TimestampedResult('', [], []),
            TimestampedResult('world', [' world'], [1.0]),
        ],
        [0.0, 30.0, 60.0],
    )
    assert merged.text == 'hello world'
    assert merged.tokens == [' hello', ' world']
    assert merged.timestamps == pytest.approx([0.5, 61.0])


def test_combine_results_text_only():
    merged = combine_results([TimestampedResult('a'), TimestampedResult('b')], [0.0, 30.0])
    assert merged.text == 'a b'
    assert merged.tokens is None and merged.timestamps is None
