"""Question and answer threads between a student and the people who can help.

A thread is scoped to one (task, student) pair. Students ask while their
enrollment is open; the task's teacher and mentors (students who passed the
same task) answer. ``subscribe`` streams the whole ordered thread list every
time something in it changes.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog

from educhain.config import Settings
from educhain.errors import InvalidInputError, NotAuthorizedError, NotFoundError
from educhain.profiles.service import load_profile
from educhain.store.base import ChangeEvent, ChangeKind, Reader, Store, Subscription
from educhain.store.records import (
    OPEN_ENROLLMENT_STATES,
    Answer,
    Enrollment,
    EnrollmentStatus,
    Question,
    ResponderRole,
    Task,
)
from educhain.tasks.service import load_task

logger = structlog.get_logger()


@dataclass(frozen=True)
class QuestionThread:
    question: Question
    answers: tuple[Answer, ...] = ()

    @property
    def is_answered(self) -> bool:
        return len(self.answers) > 0


class QuestionBoard:
    """Materialized thread list for one (task, student) pair."""

    def __init__(self, task_id: str, student_id: str) -> None:
        self.task_id = task_id
        self.student_id = student_id
        self._questions: dict[str, Question] = {}
        self._answers: dict[str, Answer] = {}

    def load(self, questions: list[Question], answers: list[Answer]) -> None:
        for question in questions:
            self._questions[question.id] = question
        for answer in answers:
            self._answers[answer.id] = answer

    def apply(self, event: ChangeEvent) -> bool:
        """Merge one change event. Returns False if it does not touch this board."""
        row = event.row
        if isinstance(row, Question):
            if row.task_id != self.task_id or row.student_id != self.student_id:
                return False
            table: dict = self._questions
        elif isinstance(row, Answer):
            if row.question_id not in self._questions:
                return False
            table = self._answers
        else:
            return False

        if event.kind == ChangeKind.DELETE:
            table.pop(row.id, None)
            if isinstance(row, Question):
                for answer_id in [a.id for a in self._answers.values() if a.question_id == row.id]:
                    del self._answers[answer_id]
        else:
            table[row.id] = row
        return True

    def snapshot(self) -> list[QuestionThread]:
        by_question: dict[str, list[Answer]] = {}
        for answer in self._answers.values():
            by_question.setdefault(answer.question_id, []).append(answer)
        threads = []
        for question in sorted(self._questions.values(), key=lambda q: (q.created_at, q.id)):
            answers = sorted(by_question.get(question.id, []), key=lambda a: (a.created_at, a.id))
            threads.append(QuestionThread(question=question, answers=tuple(answers)))
        return threads


class ThreadFeed:
    """Async iterator of thread snapshots.

    The first item is the list as loaded; each later item follows a change.
    """

    def __init__(self, board: QuestionBoard, subscription: Subscription) -> None:
        self._board = board
        self._subscription = subscription
        self._sent_initial = False
        self.current = board.snapshot()

    def __aiter__(self) -> AsyncIterator[list[QuestionThread]]:
        return self

    async def __anext__(self) -> list[QuestionThread]:
        if not self._sent_initial:
            self._sent_initial = True
            return self.current
        while True:
            event = await self._subscription.next_event()
            if self._board.apply(event):
                self.current = self._board.snapshot()
                return self.current


async def _threads(reader: Reader, task_id: str, student_id: str) -> tuple[list[Question], list[Answer]]:
    questions = await reader.list(Question, task_id=task_id, student_id=student_id, order_by="created_at")
    answers = await reader.list(Answer, task_id=task_id, student_id=student_id, order_by="created_at")
    return questions, answers


class QuestionAnswerChannel:
    def __init__(self, store: Store, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    def _clean(self, text: str, what: str) -> str:
        text = (text or "").strip()
        if not text:
            raise InvalidInputError(f"{what} text is required")
        if len(text) > self._settings.question_max_length:
            raise InvalidInputError(
                f"{what} text exceeds {self._settings.question_max_length} characters",
            )
        return text

    async def _responder_role(self, reader: Reader, task: Task, profile_id: str) -> ResponderRole | None:
        if profile_id == task.teacher_id:
            return ResponderRole.TEACHER
        reviewed = await reader.list(
            Enrollment,
            task_id=task.id,
            student_id=profile_id,
            status=EnrollmentStatus.REVIEWED,
        )
        if any((e.review_score or 0) >= self._settings.passing_score for e in reviewed):
            return ResponderRole.MENTOR
        return None

    async def can_view(self, task_id: str, student_id: str, viewer_id: str) -> bool:
        """The asking student and everyone who may answer can read a thread list."""
        if viewer_id == student_id:
            return True
        task = await load_task(self._store, task_id)
        return await self._responder_role(self._store, task, viewer_id) is not None

    async def ask_question(self, task_id: str, student_id: str, text: str) -> Question:
        """Post a question. The student must hold an open enrollment on the task."""
        text = self._clean(text, "Question")
        question = Question(task_id=task_id, student_id=student_id, question_text=text)
        async with self._store.transaction() as tx:
            await load_profile(tx, student_id)
            await load_task(tx, task_id)
            enrollments = await tx.list(Enrollment, task_id=task_id, student_id=student_id)
            if not any(e.status in OPEN_ENROLLMENT_STATES for e in enrollments):
                raise NotAuthorizedError(
                    "Only students enrolled in the task can ask questions",
                    task_id=task_id,
                    student_id=student_id,
                )
            await tx.insert(question)

        logger.info("question_asked", question_id=question.id, task_id=task_id, student_id=student_id)
        return question

    async def answer_question(self, question_id: str, responder_id: str, text: str) -> Answer:
        """Answer as the task's teacher or as a mentor who passed the task."""
        text = self._clean(text, "Answer")
        async with self._store.transaction() as tx:
            question = await tx.get(Question, question_id)
            if question is None:
                raise NotFoundError(f"Question {question_id} not found", question_id=question_id)
            task = await load_task(tx, question.task_id)
            await load_profile(tx, responder_id)

            role = await self._responder_role(tx, task, responder_id)
            if role is None:
                raise NotAuthorizedError(
                    "Only the teacher or a mentor who passed this task can answer",
                    question_id=question_id,
                    responder_id=responder_id,
                )

            answer = Answer(
                question_id=question_id,
                task_id=question.task_id,
                student_id=question.student_id,
                responder_id=responder_id,
                responder_role=role,
                answer_text=text,
            )
            await tx.insert(answer)

        logger.info("question_answered", question_id=question_id, answer_id=answer.id, role=role.value)
        return answer

    async def list_threads(self, task_id: str, student_id: str) -> list[QuestionThread]:
        board = QuestionBoard(task_id, student_id)
        board.load(*await _threads(self._store, task_id, student_id))
        return board.snapshot()

    @asynccontextmanager
    async def subscribe(self, task_id: str, student_id: str) -> AsyncIterator[ThreadFeed]:
        """Stream thread snapshots for a (task, student) pair.

        The store subscription is opened before the initial load so no change
        committed in between is missed, and it is released on every exit.
        """
        thread = {"task_id": task_id, "student_id": student_id}
        subscription = self._store.subscribe({Question: thread, Answer: thread})
        async with subscription:
            board = QuestionBoard(task_id, student_id)
            board.load(*await _threads(self._store, task_id, student_id))
            yield ThreadFeed(board, subscription)
