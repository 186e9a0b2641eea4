from simulations.paper_entry import PENDING, SAVED, PaperResultBoard


class RecordingTransport:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def create_paper_result(self, simulation_id, student_id, answers, was_present):
        self.calls.append((simulation_id, student_id, answers, was_present))
        if self.fail:
            raise RuntimeError("409 result already exists")
        return {"total_score": 0}


def _board():
    students = [
        {"id": 1, "name": "Anna", "has_result": False},
        {"id": 2, "name": "Luca", "has_result": True},
    ]
    return PaperResultBoard("sim-1", ["q1", "q2"], students)


def test_saved_rows_cannot_be_expanded_or_edited():
    board = _board()
    assert board.entry(2).save_state == SAVED
    assert board.toggle_student(2).is_expanded is False
    board.set_answer(2, "q1", "o1")
    assert board.entry(2).answers == {}
    assert board.completed_count == 1


def test_marking_absent_clears_answers_and_sends_empty_payload():
    board = _board()
    board.set_answer(1, "q1", "o1")
    board.toggle_presence(1)

    assert board.entry(1).answers == {}
    assert board.payload(1) == []
    board.set_answer(1, "q2", "o2")
    assert board.entry(1).answers == {}


def test_payload_lists_every_question_with_blanks_as_none():
    board = _board()
    board.set_answer(1, "q2", "o2")
    assert board.payload(1) == [
        {"question_id": "q1", "selected_option_id": None},
        {"question_id": "q2", "selected_option_id": "o2"},
    ]


def test_successful_save_locks_the_row():
    board = _board()
    transport = RecordingTransport()
    board.toggle_student(1)
    board.set_answer(1, "q1", "o1")

    assert board.save(1, transport) is True
    e = board.entry(1)
    assert (e.save_state, e.has_result, e.is_expanded) == (SAVED, True, False)
    assert transport.calls[0][3] is True
    assert board.save(1, transport) is False
    assert len(transport.calls) == 1


def test_failed_save_returns_to_pending_with_error():
    board = _board()
    assert board.save(1, RecordingTransport(fail=True)) is False
    e = board.entry(1)
    assert e.save_state == PENDING
    assert "409" in e.error
    assert e.has_result is False


def test_reset_restores_presence_and_clears_answers():
    board = _board()
    board.toggle_presence(1)
    board.reset(1)
    assert board.entry(1).was_present is True
    assert board.entry(1).answers == {}
