from testcall.config import ReceptionistConfig
from testcall.session import CallSession, new_call_id
from testcall.transcript import TranscriptLog


def test_call_ids_are_prefixed_and_unique():
    ids = {new_call_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(i.startswith("test_") and len(i) == 17 for i in ids)


def test_session_fields_default_empty():
    s = CallSession(config=ReceptionistConfig())
    assert isinstance(s.transcript, TranscriptLog)
    assert len(s.transcript) == 0
    assert s.extraction_attempted is False
    assert s.extraction is None
    assert s.muted is False


def test_sessions_do_not_share_transcripts():
    a = CallSession(config=ReceptionistConfig())
    b = CallSession(config=ReceptionistConfig())
    a.transcript.append("assistant", "Hello")
    assert len(b.transcript) == 0
    assert a.call_id != b.call_id
