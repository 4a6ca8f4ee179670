from testcall.states import ConversationState


def test_all_six_states_exist():
    expected = {
        "idle", "requesting_permission", "active",
        "processing", "ended", "reviewing_extraction",
    }
    assert {s.value for s in ConversationState} == expected


def test_live_states():
    assert ConversationState.REQUESTING_PERMISSION.is_live
    assert ConversationState.ACTIVE.is_live
    assert ConversationState.PROCESSING.is_live


def test_idle_and_finished_states_are_not_live():
    assert not ConversationState.IDLE.is_live
    assert not ConversationState.ENDED.is_live
    assert not ConversationState.REVIEWING_EXTRACTION.is_live
