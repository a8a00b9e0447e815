from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar, Union

from api_client import ApiError

T = TypeVar("T")


@dataclass(frozen=True)
class Loading:
    pass


@dataclass(frozen=True)
class Success(Generic[T]):
    data: T


@dataclass(frozen=True)
class Error:
    message: str
    exc: Optional[BaseException] = None


LOADING = Loading()

Result = Union[Loading, Success[T], Error]


def is_loading(result: Result) -> bool:
    return isinstance(result, Loading)


def is_success(result: Result) -> bool:
    return isinstance(result, Success)


def is_error(result: Result) -> bool:
    return isinstance(result, Error)


def capture(fn: Callable[..., T], *args: Any, **kwargs: Any) -> Result:
    """Run an API call and wrap its outcome as Success or Error."""
    try:
        return Success(fn(*args, **kwargs))
    except ApiError as e:
        return Error(e.message, e)
