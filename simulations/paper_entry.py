"""
Client-side state for staff entering paper results, one row per student.

``transport.create_paper_result(simulation_id, student_id, answers, was_present)``
performs the network call and raises on failure.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

PENDING = "PENDING"
SAVING = "SAVING"
SAVED = "SAVED"


@dataclass
class StudentEntry:
    student_id: object
    name: str = ""
    has_result: bool = False
    is_expanded: bool = False
    was_present: bool = True
    answers: dict = field(default_factory=dict)  # question_id -> option_id | None
    save_state: str = PENDING
    error: Optional[str] = None


class PaperResultBoard:
    def __init__(self, simulation_id, question_ids, students):
        """
        ``students`` is the ``students`` list returned by the
        paper-based-students endpoint (``id``, ``name``, ``has_result``).
        """
        self.simulation_id = simulation_id
        self.question_ids = [str(q) for q in question_ids]
        self.entries: dict = {}
        for s in students:
            sid = s["id"]
            self.entries[sid] = StudentEntry(
                student_id=sid,
                name=s.get("name", ""),
                has_result=bool(s.get("has_result")),
                save_state=SAVED if s.get("has_result") else PENDING,
            )

    def entry(self, student_id) -> StudentEntry:
        return self.entries[student_id]

    @property
    def completed_count(self) -> int:
        return sum(1 for e in self.entries.values() if e.has_result)

    def toggle_student(self, student_id):
        e = self.entry(student_id)
        if e.has_result:
            return e
        e.is_expanded = not e.is_expanded
        return e

    def set_answer(self, student_id, question_id, option_id):
        """Ignored for absent students and saved rows."""
        e = self.entry(student_id)
        if e.has_result or not e.was_present or e.save_state == SAVING:
            return e
        e.answers[str(question_id)] = str(option_id) if option_id is not None else None
        return e

    def toggle_presence(self, student_id):
        """Marking absent clears answers; marking present again starts empty."""
        e = self.entry(student_id)
        if e.has_result or e.save_state == SAVING:
            return e
        e.was_present = not e.was_present
        if not e.was_present:
            e.answers = {}
        return e

    def reset(self, student_id):
        e = self.entry(student_id)
        if e.has_result or e.save_state == SAVING:
            return e
        e.answers = {}
        e.was_present = True
        e.error = None
        return e

    def payload(self, student_id) -> list:
        e = self.entry(student_id)
        if not e.was_present:
            return []
        return [
            {"question_id": qid, "selected_option_id": e.answers.get(qid)}
            for qid in self.question_ids
        ]

    def save(self, student_id, transport) -> bool:
        """
        Returns False without calling the transport when a save is already in
        flight or the row is already saved.
        """
        e = self.entry(student_id)
        if e.save_state == SAVING or e.has_result:
            return False

        e.save_state = SAVING
        e.error = None
        try:
            transport.create_paper_result(self.simulation_id, student_id, self.payload(student_id), e.was_present)
        except Exception as exc:
            logger.warning("paper result save failed student=%s: %s", student_id, exc)
            e.save_state = PENDING
            e.error = str(exc)
            return False

        e.save_state = SAVED
        e.has_result = True
        e.is_expanded = False
        return True
