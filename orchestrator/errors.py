"""Error kinds raised by the story pipeline."""
from typing import List, Optional


class StoryError(RuntimeError):
    pass


class GenerationTimeout(StoryError, TimeoutError):
    def __init__(
        self,
        message: str,
        *,
        label: str = "",
        submission_handle: Optional[str] = None,
        backend_job_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.label = label
        self.submission_handle = submission_handle
        self.backend_job_id = backend_job_id


class Cancelled(StoryError):
    pass


class BackendUnavailable(StoryError):
    pass


class MalformedResponse(StoryError):
    pass


class ResourceUnavailable(StoryError):
    pass


def exc_summary(err: BaseException) -> str:
    msg = str(err).strip()
    if not msg:
        msg = repr(err)
    return f"{type(err).__name__}: {msg}"


def _flatten_exceptions(err: BaseException) -> List[BaseException]:
    if isinstance(err, BaseExceptionGroup):
        flattened: List[BaseException] = []
        for sub in err.exceptions:
            flattened.extend(_flatten_exceptions(sub))
        return flattened
    return [err]


def format_exception(err: BaseException) -> str:
    if isinstance(err, BaseExceptionGroup):
        subs = "; ".join(exc_summary(sub) for sub in _flatten_exceptions(err))
        if subs:
            return f"{exc_summary(err)} | sub-exceptions: {subs}"
    return exc_summary(err)
