import httpx

from janeproxy.service.web_context import (
    CONTEXT_CHAR_LIMIT,
    MAX_SOURCES,
    PAGE_CHAR_LIMIT,
    WebContextFetcher,
    html_to_text,
)

SEEDS = (
    "https://good.example/a",
    "https://good.example/broken",
    "https://evil.example/x",
    "https://good.example/b",
    "https://good.example/c",
    "https://good.example/d",
)

ARTICLE = (
    "Cognitive behavioural therapy is a structured, time-limited talk therapy that helps "
    "people notice unhelpful thinking patterns and practise new ways of responding to them."
)


def _page(body: str) -> str:
    return (
        "<html><head><title>Guide</title><style>p { color: red; }</style>"
        "<script>var tracking = 'hidden';</script></head>"
        f"<body><article>{body}</article></body></html>"
    )


def _handler(requested):
    def handle(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        if request.url.path == "/broken":
            return httpx.Response(500, text="oops")
        page = _page(f"<p>Page {request.url.path}. {ARTICLE}</p><p>{ARTICLE}</p>")
        return httpx.Response(200, text=page)

    return handle


def test_html_to_text_keeps_readable_text_only():
    html = _page(
        f"<p>CBT &amp; DBT&nbsp;skills for everyday stress. {ARTICLE}</p>"
        "<!-- <script> -->"
        f"<p>Keep this paragraph about grounding exercises. {ARTICLE}</p>"
        "<script>var a = '</p>';</script>"
    )

    text = html_to_text(html)

    assert "CBT & DBT" in text
    assert "&amp;" not in text
    assert "Keep this paragraph about grounding exercises." in text
    assert "tracking" not in text
    assert "color: red" not in text
    assert "\n" not in text


def test_html_to_text_truncates_long_pages():
    sentences = " ".join(f"Sentence number {i} describes a coping skill." for i in range(600))
    assert len(html_to_text(_page(f"<p>{sentences}</p>"))) == PAGE_CHAR_LIMIT


def test_html_to_text_without_readable_text_is_empty():
    assert html_to_text("") == ""
    assert html_to_text("<html><body><script>x()</script></body></html>") == ""


def test_allow_list_matches_origin_prefix():
    fetcher = WebContextFetcher(enabled=True, allow_list=["https://good.example"])
    assert fetcher.is_allowed("https://good.example/page")
    assert fetcher.is_allowed("https://good.example")
    assert not fetcher.is_allowed("https://evil.example/page")
    assert not fetcher.is_allowed("https://good.example.evil.com/x")
    assert not fetcher.is_allowed("https://good.examplex/x")
    assert not fetcher.is_allowed("not a url")


def test_allow_list_path_prefix_ends_at_segment():
    fetcher = WebContextFetcher(enabled=True, allow_list=["https://cmha.ca/find-info/"])
    assert fetcher.is_allowed("https://cmha.ca/find-info/mental-health/")
    assert not fetcher.is_allowed("https://cmha.ca/find-info-elsewhere")
    assert not fetcher.is_allowed("https://cmha.ca/about")


async def test_fetch_refuses_disallowed_origin_without_network():
    requested = []
    fetcher = WebContextFetcher(
        enabled=True,
        allow_list=["https://good.example"],
        transport=httpx.MockTransport(_handler(requested)),
    )
    assert await fetcher.fetch("https://evil.example/x") is None
    assert requested == []


async def test_fetch_returns_none_on_error_status():
    fetcher = WebContextFetcher(
        enabled=True,
        allow_list=["https://good.example"],
        transport=httpx.MockTransport(_handler([])),
    )
    assert await fetcher.fetch("https://good.example/broken") is None
    assert "Page /a." in await fetcher.fetch("https://good.example/a")


async def test_fetch_returns_none_on_transport_error():
    def explode(request):
        raise httpx.ConnectError("unreachable", request=request)

    fetcher = WebContextFetcher(
        enabled=True,
        allow_list=["https://good.example"],
        transport=httpx.MockTransport(explode),
    )
    assert await fetcher.fetch("https://good.example/a") is None


async def test_augment_keeps_first_three_successful_sources():
    requested = []
    fetcher = WebContextFetcher(
        enabled=True,
        allow_list=["https://good.example"],
        seeds=SEEDS,
        transport=httpx.MockTransport(_handler(requested)),
    )

    context = await fetcher.augment()

    assert context.sources == [
        "https://good.example/a",
        "https://good.example/b",
        "https://good.example/c",
    ]
    assert len(context.sources) == MAX_SOURCES
    assert "https://good.example/d" not in requested
    assert "https://evil.example/x" not in requested
    assert context.text.startswith("SOURCE https://good.example/a:\n")
    assert context.text.count("\n---\n") == 2
    assert len(context.text) <= CONTEXT_CHAR_LIMIT


async def test_disabled_augment_does_no_network():
    requested = []
    fetcher = WebContextFetcher(
        enabled=False,
        allow_list=["https://good.example"],
        seeds=SEEDS,
        transport=httpx.MockTransport(_handler(requested)),
    )
    context = await fetcher.augment()
    assert context.text == ""
    assert context.sources == []
    assert requested == []


async def test_empty_allow_list_yields_empty_context():
    fetcher = WebContextFetcher(enabled=True, allow_list=[], seeds=SEEDS)
    context = await fetcher.augment()
    assert context.text == ""


async def test_fetch_returns_none_on_malformed_url():
    requested = []
    fetcher = WebContextFetcher(
        enabled=True,
        allow_list=["https://good.example"],
        transport=httpx.MockTransport(_handler(requested)),
    )
    assert await fetcher.fetch("https://good.example/a\x00b") is None
    assert requested == []


async def test_fetch_returns_none_for_page_without_text():
    fetcher = WebContextFetcher(
        enabled=True,
        allow_list=["https://good.example"],
        transport=httpx.MockTransport(
            lambda request: httpx.Response(200, text="<html><body><script>x()</script></body></html>")
        ),
    )
    assert await fetcher.fetch("https://good.example/empty") is None
