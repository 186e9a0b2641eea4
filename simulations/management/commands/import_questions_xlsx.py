# simulations/management/commands/import_questions_xlsx.py
import re

import pandas as pd
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from common.enums import QuestionType
from simulations.models import AnswerOption, Question, Simulation, SimulationQuestion, Subject


QUESTION_RE = re.compile(r"^\s*(?:question|domanda)\b\s*[:\-]?\s*(.*)$", re.IGNORECASE)
OPTION_RE   = re.compile(r"^\s*\(?([A-Ea-e])[.)]\s*(.*)$")
ANSWER_RE   = re.compile(r"^\s*(?:answer|risposta)\b\s*[:\-]?\s*\(?([A-Ea-e])\)?", re.IGNORECASE)
EXPL_RE     = re.compile(r"^\s*(?:explanation|spiegazione)\b\s*[:\-]?\s*(.*)$", re.IGNORECASE)
SUBJECT_RE  = re.compile(r"^\s*(?:subject|materia)\b\s*[:\-]\s*(.+)$", re.IGNORECASE)

LETTERS = ["a", "b", "c", "d", "e"]


def _clean(s):
    if s is None:
        return ""
    s = str(s).strip()
    # strip stray "Q1." / "1)" numbers at start
    s = re.sub(r"^\s*(?:Q?\d+[.)-]\s*)", "", s, flags=re.IGNORECASE)
    return s


def _is_boundary(line):
    return bool(QUESTION_RE.match(line) or ANSWER_RE.match(line) or OPTION_RE.match(line)
                or SUBJECT_RE.match(line))


def parse_lines(lines):
    """
    lines: list[str] from the first column of the sheet.
    A "Subject: X" line applies to every following question until the next one.
    Returns: list of dicts {text, options: [(letter, text), ...], correct, explanation, subject}
    """
    out = []
    subject = None
    i = 0
    n = len(lines)

    while i < n:
        row = _clean(lines[i])
        m_s = SUBJECT_RE.match(row)
        if m_s:
            subject = m_s.group(1).strip()
            i += 1
            continue

        m_q = QUESTION_RE.match(row)
        if not m_q:
            i += 1
            continue

        q_text = m_q.group(1).strip() or row
        i += 1
        options = []
        explanation = ""
        correct = None

        while i < n:
            curr = _clean(lines[i])
            if not curr:
                i += 1
                continue
            if QUESTION_RE.match(curr) or SUBJECT_RE.match(curr):
                break

            m_ans = ANSWER_RE.match(curr)
            if m_ans:
                correct = m_ans.group(1).lower()
                i += 1
                if i < n:
                    m_ex = EXPL_RE.match(_clean(lines[i]))
                    if m_ex:
                        explanation = m_ex.group(1).strip()
                        i += 1
                break

            m_opt = OPTION_RE.match(curr)
            if m_opt:
                letter = m_opt.group(1).lower()
                text = m_opt.group(2).strip()
                i += 1
                # multi-line option continuation
                while i < n and not _is_boundary(_clean(lines[i])):
                    cont = _clean(lines[i])
                    if cont:
                        text = (text + " " + cont).strip()
                    i += 1
                options.append((letter, text))
                continue

            q_text = (q_text + " " + curr).strip()
            i += 1

        if not options or not correct or correct not in dict(options):
            # malformed block
            continue

        out.append({
            "text": q_text,
            "options": options,
            "correct": correct,
            "explanation": explanation,
            "subject": subject,
        })

    return out


class Command(BaseCommand):
    help = "Import single-choice questions from an Excel file laid out as 'Subject/Question/Options/Answer' rows."

    def add_arguments(self, parser):
        parser.add_argument("--file", required=True, help="Path to .xlsx file")
        parser.add_argument("--sheet", default="Sheet1", help="Worksheet name (default: Sheet1)")
        parser.add_argument("--subject", default="GEN", help="Subject code for rows without a Subject line")
        parser.add_argument("--simulation", help="Append imported questions to this simulation id")
        parser.add_argument("--dry-run", action="store_true", help="Parse only, do not write to DB")
        parser.add_argument("--points", type=float, default=1.0)
        parser.add_argument("--negative-points", type=float, default=0.0)

    def handle(self, *args, **opts):
        path = opts["file"]
        sheet = opts["sheet"]
        self.stdout.write(f"Reading file: {path} (sheet {sheet})")

        try:
            # header=None so the first row is not swallowed as a header
            df = pd.read_excel(path, sheet_name=sheet, header=None, engine="openpyxl")
        except (OSError, ValueError) as e:
            raise CommandError(f"Failed to read Excel: {e}")

        col0 = df.iloc[:, 0].tolist()
        lines = [str(x) for x in col0 if str(x).strip() and str(x).strip().lower() != "nan"]

        blocks = parse_lines(lines)
        self.stdout.write(f"Parsed {len(blocks)} question(s) from Excel.")

        if opts["dry_run"]:
            self.stdout.write("Dry-run complete. No DB changes made.")
            return

        simulation = None
        if opts["simulation"]:
            simulation = Simulation.objects.filter(pk=opts["simulation"]).first()
            if simulation is None:
                raise CommandError(f"Simulation {opts['simulation']} not found.")
            if simulation.is_locked:
                raise CommandError("Simulation already has attempts; its questions cannot change.")

        with transaction.atomic():
            default_subject, _ = Subject.objects.get_or_create(
                code=opts["subject"].upper(), defaults={"name": opts["subject"].upper()}
            )
            subjects = {}
            next_order = (simulation.questions.count() + 1) if simulation else 1
            created_q = created_o = 0

            for b in blocks:
                subject = default_subject
                if b["subject"]:
                    key = b["subject"].strip()
                    if key not in subjects:
                        subjects[key], _ = Subject.objects.get_or_create(
                            name=key, defaults={"code": key[:16].upper()}
                        )
                    subject = subjects[key]

                q = Question.objects.create(
                    text=b["text"],
                    explanation=b.get("explanation", ""),
                    question_type=QuestionType.SINGLE_CHOICE,
                    subject=subject,
                    points=opts["points"],
                    negative_points=opts["negative_points"],
                    is_active=True,
                )
                created_q += 1

                # options keep their sheet letter as label, ordered A..E
                letter_to_text = dict(b["options"])
                for order, letter in enumerate(LETTERS):
                    if letter in letter_to_text:
                        AnswerOption.objects.create(
                            question=q,
                            text=letter_to_text[letter],
                            label=letter.upper(),
                            is_correct=(letter == b["correct"]),
                            order=order,
                        )
                        created_o += 1

                if simulation is not None:
                    SimulationQuestion.objects.create(simulation=simulation, question=q, order=next_order)
                    next_order += 1

        self.stdout.write(f"Import complete. Created {created_q} question(s) and {created_o} option(s).")
