"""Request/response schemas for question endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from educhain.questions.channel import QuestionThread
from educhain.store.records import ResponderRole


class QuestionCreateRequest(BaseModel):
    question_text: str = Field(..., min_length=1)


class AnswerCreateRequest(BaseModel):
    answer_text: str = Field(..., min_length=1)


class QuestionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    task_id: str
    student_id: str
    question_text: str
    created_at: datetime


class AnswerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    question_id: str
    responder_id: str
    responder_role: ResponderRole
    answer_text: str
    created_at: datetime


class ThreadResponse(BaseModel):
    question: QuestionResponse
    answers: list[AnswerResponse]
    is_answered: bool

    @classmethod
    def from_thread(cls, thread: QuestionThread) -> ThreadResponse:
        return cls(
            question=QuestionResponse.model_validate(thread.question),
            answers=[AnswerResponse.model_validate(a) for a in thread.answers],
            is_answered=thread.is_answered,
        )


class ThreadListResponse(BaseModel):
    threads: list[ThreadResponse]
