"""Gateway and image backend interfaces."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Iterable, Protocol, Sequence, TypeVar

from ..errors import BackendFailure
from ..turns import Completion, ConversationTurn, ImageBlob, SearchAnswer

T = TypeVar("T")


class ModelGateway(Protocol):
    """Capability interface over a generative backend.

    Implementations raise ``QuotaExceeded`` on resource exhaustion and
    ``BackendFailure`` for anything else; they never retry.
    """

    name: str

    def complete_with_tools(
        self,
        history: Sequence[ConversationTurn],
        turn: ConversationTurn,
        system_instruction: str,
        tools: Sequence[Any],
    ) -> Completion:
        ...

    def generate_image(self, prompt: str, aspect_ratio: str | None = None) -> ImageBlob:
        ...

    def generate_image_from_references(self, prompt: str, images: Sequence[ImageBlob]) -> ImageBlob:
        ...

    def search(self, query: str) -> SearchAnswer:
        ...

    def complex_reasoning(self, query: str) -> str:
        ...

    def synthesize_speech(self, text: str) -> bytes:
        ...

    def analyze_image(self, image: ImageBlob, instruction: str) -> str:
        ...


class ImageBackend(Protocol):
    name: str

    def generate(self, prompt: str, aspect_ratio: str) -> ImageBlob:
        ...


class ProviderRegistry:
    """Image backends kept in priority order."""

    def __init__(self, providers: Iterable[ImageBackend]) -> None:
        self._ordered = list(providers)
        self._providers = {provider.name: provider for provider in self._ordered}

    def get(self, name: str) -> ImageBackend | None:
        return self._providers.get(name)

    def list(self) -> list[str]:
        return sorted(self._providers.keys())

    def providers(self) -> list[ImageBackend]:
        return list(self._ordered)


def call_with_timeout(fn: Callable[..., T], *args: Any, timeout_s: float | None = None, **kwargs: Any) -> T:
    """Run a gateway call, treating expiry as a backend failure.

    The worker thread is abandoned on timeout; its eventual result is dropped.
    """
    if timeout_s is None:
        return fn(*args, **kwargs)
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pak-gateway")
    future = pool.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout_s)
    except FutureTimeoutError:
        future.cancel()
        raise BackendFailure(f"Gateway call timed out after {timeout_s:g}s.") from None
    finally:
        pool.shutdown(wait=False)
