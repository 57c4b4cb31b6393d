from types import SimpleNamespace

from janeproxy.service.model_backend import (
    OpenAIStreamBackend,
    StubBackend,
    build_backend,
)


async def test_stub_backend_streams_fixed_reply():
    backend = StubBackend()
    parts = [part async for part in backend.stream([{"role": "user", "content": "hi"}])]
    assert len(parts) > 1
    assert "".join(parts) == StubBackend.STUB_RESPONSE


def test_build_backend_without_key_returns_stub():
    backend = build_backend("gpt-4o-mini", api_key=None)
    assert isinstance(backend, StubBackend)
    assert backend.mode == "stub"


def test_build_backend_with_key_returns_openai_backend():
    backend = build_backend(
        "gpt-4o-mini", api_key="sk-test", base_url="http://localhost:9/v1", timeout=5
    )
    assert isinstance(backend, OpenAIStreamBackend)
    assert backend.model == "gpt-4o-mini"


class _FakeStream:
    def __init__(self, chunks):
        self._chunks = chunks
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self._chunks:
            yield chunk


def _chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class _FakeCompletions:
    def __init__(self, stream):
        self.stream = stream
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        return self.stream


async def test_openai_backend_yields_non_empty_deltas():
    stream = _FakeStream(
        [_chunk("Hel"), _chunk(None), SimpleNamespace(choices=[]), _chunk(""), _chunk("lo")]
    )
    completions = _FakeCompletions(stream)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    backend = OpenAIStreamBackend("m", api_key="k", client=client)

    parts = [part async for part in backend.stream([{"role": "user", "content": "hi"}])]

    assert parts == ["Hel", "lo"]
    assert completions.kwargs["stream"] is True
    assert completions.kwargs["model"] == "m"
    assert stream.closed
