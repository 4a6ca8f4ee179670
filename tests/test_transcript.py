import pytest

from testcall.transcript import (
    ASSISTANT,
    CALLER,
    TranscriptLog,
    TranscriptOrderError,
    to_json_array,
    to_plain_text,
    to_timestamped_dump,
)


def _log(*texts):
    log = TranscriptLog()
    for i, text in enumerate(texts):
        log.append(ASSISTANT if i % 2 == 0 else CALLER, text)
    return log


class TestTranscriptLog:
    def test_sequence_numbers_follow_append_order(self):
        log = _log("Hello.", "Hi.", "How can I help?")
        assert [t.sequence for t in log] == [0, 1, 2]
        assert [t.role for t in log] == [ASSISTANT, CALLER, ASSISTANT]

    def test_first_turn_must_be_assistant(self):
        log = TranscriptLog()
        with pytest.raises(TranscriptOrderError):
            log.append(CALLER, "Hello?")
        assert len(log) == 0

    def test_rejects_two_caller_turns_in_a_row(self):
        log = _log("Hello.", "My sink is leaking.")
        with pytest.raises(TranscriptOrderError):
            log.append(CALLER, "It's urgent.")
        assert len(log) == 2

    def test_rejects_unknown_role(self):
        with pytest.raises(ValueError):
            TranscriptLog().append("system", "You are Flynn")

    def test_caller_turn_count(self):
        assert _log("Hello.").caller_turn_count() == 0
        assert _log("Hello.", "a", "b", "c", "d").caller_turn_count() == 2

    def test_turns_is_a_snapshot(self):
        log = _log("Hello.")
        turns = log.turns
        log.append(CALLER, "Hi.")
        assert len(turns) == 1
        assert len(log.turns) == 2


class TestToPlainText:
    def test_basic_conversation(self):
        log = _log("Hi, this is Flynn.", "My sink is leaking.", "Sorry to hear that.")
        assert to_plain_text(log) == (
            "Assistant: Hi, this is Flynn.\n"
            "Caller: My sink is leaking.\n"
            "Assistant: Sorry to hear that."
        )

    def test_empty_log(self):
        assert to_plain_text(TranscriptLog()) == ""


class TestToJsonArray:
    def test_basic_conversation(self):
        result = to_json_array(_log("Hello.", "Hi."))
        assert result == [
            {"role": "assistant", "content": "Hello."},
            {"role": "caller", "content": "Hi."},
        ]


class TestToTimestampedDump:
    def test_relative_timestamps(self):
        log = _log("Hello.", "Hi.")
        dump = to_timestamped_dump(log, "test_abc", "ended")
        assert dump["call_id"] == "test_abc"
        assert dump["final_state"] == "ended"
        assert dump["entries"][0]["t"] == 0.0
        assert dump["entries"][1]["seq"] == 1
        assert dump["entries"][1]["role"] == "caller"
        assert dump["entries"][1]["t"] >= 0.0

    def test_empty_log(self):
        dump = to_timestamped_dump(TranscriptLog(), "test_abc", "ended")
        assert dump["entries"] == []
