"""Errors raised by the exam session engine."""


class InvalidOption(ValueError):
    """Answer index outside [0, len(options)) for the question. Nothing was changed."""

    def __init__(self, question_id: str, option_index, option_count: int):
        self.question_id = question_id
        self.option_index = option_index
        self.option_count = option_count
        super().__init__(
            f"Option {option_index!r} is not valid for question {question_id} "
            f"(expected 0..{option_count - 1})"
        )


class UnknownQuestion(InvalidOption):
    """Question id is not part of the exam."""

    def __init__(self, question_id: str):
        self.question_id = question_id
        self.option_index = None
        self.option_count = 0
        ValueError.__init__(self, f"Question {question_id} is not part of this exam")


class SessionNotActive(RuntimeError):
    """Answer edits arrived after the session left the Active state."""

    def __init__(self, session_id: str, state):
        self.session_id = session_id
        self.state = state
        super().__init__(f"Session {session_id} is no longer active ({state.value})")


class SessionNotFound(LookupError):
    pass


class StoragePersistFailure(RuntimeError):
    """
    Saving the submission failed after every retry.

    The computed submission is kept on the error and on the coordinator so
    a later manual retry sends exactly the same record.
    """

    def __init__(self, submission, attempts: int, cause: BaseException | None = None):
        self.submission = submission
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Could not save submission for session {submission.session_id} after {attempts} attempt(s)"
        )
