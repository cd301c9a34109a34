"""Streaming Channel

Wraps a model provider's fragment stream into an ordered sequence of
``StreamEvent`` objects that always ends with exactly one terminal event:
``completed`` carrying the full text, or ``failed`` carrying the error.

Cancellation is not converted into a ``failed`` event; it propagates to the
consumer after the provider stream has been closed.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from stepwright.models.interfaces import IModelProvider, ModelOptions


logger = logging.getLogger(__name__)


class StreamEventKind(str, Enum):
    FRAGMENT = "fragment"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class StreamEvent:
    kind: StreamEventKind
    text: str = ""
    error: Optional[BaseException] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind != StreamEventKind.FRAGMENT


async def stream_fragments(
    provider: IModelProvider,
    prompt: str,
    options: Optional[ModelOptions] = None,
) -> AsyncIterator[StreamEvent]:
    """Yield fragment events in arrival order, then one terminal event."""
    parts: List[str] = []
    stream = provider.stream(prompt, options)
    try:
        async for fragment in stream:
            if fragment:
                parts.append(fragment)
            yield StreamEvent(StreamEventKind.FRAGMENT, text=fragment)
    except Exception as e:
        logger.warning(f"Model stream failed after {len(parts)} fragment(s): {e}")
        yield StreamEvent(StreamEventKind.FAILED, text="".join(parts), error=e)
        return
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()

    yield StreamEvent(StreamEventKind.COMPLETED, text="".join(parts))


async def collect_stream(
    provider: IModelProvider,
    prompt: str,
    options: Optional[ModelOptions] = None,
    on_fragment: Optional[Callable[[str], Awaitable[None]]] = None,
) -> str:
    """Drain the channel and return the full text.

    Raises the provider's error if the stream ends with a ``failed`` event.
    """
    text = ""
    error: Optional[BaseException] = None
    async for event in stream_fragments(provider, prompt, options):
        if event.kind == StreamEventKind.FRAGMENT:
            if on_fragment is not None:
                await on_fragment(event.text)
        elif event.kind == StreamEventKind.FAILED:
            error = event.error
        else:
            text = event.text

    if error is not None:
        raise error
    return text
