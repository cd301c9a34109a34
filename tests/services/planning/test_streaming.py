"""
Test module for stepwright.services.planning.streaming
"""

import pytest
from unittest.mock import AsyncMock

from stepwright.models.interfaces import IModelProvider
from stepwright.services.planning.streaming import StreamEventKind, collect_stream, stream_fragments


class FragmentProvider(IModelProvider):
    def __init__(self, fragments, error=None):
        self.fragments = fragments
        self.error = error
        self.closed = False

    async def generate(self, prompt, options=None):
        return "".join(self.fragments)

    async def stream(self, prompt, options=None):
        try:
            for fragment in self.fragments:
                yield fragment
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


class TestStreamFragments:

    @pytest.mark.asyncio
    async def test_fragments_then_completed(self):
        provider = FragmentProvider(["Hel", "lo", "", "!"])
        events = [event async for event in stream_fragments(provider, "prompt")]

        assert [e.kind for e in events] == [StreamEventKind.FRAGMENT] * 4 + [StreamEventKind.COMPLETED]
        assert [e.text for e in events[:-1]] == ["Hel", "lo", "", "!"]
        assert events[-1].text == "Hello!"
        assert events[-1].is_terminal
        assert provider.closed

    @pytest.mark.asyncio
    async def test_failure_is_terminal_event(self):
        provider = FragmentProvider(["partial"], error=ConnectionError("dropped"))
        events = [event async for event in stream_fragments(provider, "prompt")]

        assert events[-1].kind == StreamEventKind.FAILED
        assert isinstance(events[-1].error, ConnectionError)
        assert events[-1].text == "partial"
        assert sum(1 for e in events if e.is_terminal) == 1


class TestCollectStream:

    @pytest.mark.asyncio
    async def test_returns_full_text_and_forwards_fragments(self):
        on_fragment = AsyncMock()
        text = await collect_stream(FragmentProvider(["a", "b", "c"]), "p", on_fragment=on_fragment)

        assert text == "abc"
        assert [c.args[0] for c in on_fragment.await_args_list] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_raises_provider_error(self):
        with pytest.raises(ConnectionError, match="dropped"):
            await collect_stream(FragmentProvider(["a"], error=ConnectionError("dropped")), "p")
