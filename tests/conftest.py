import pytest

from parallel_search.config import Settings


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        search_ttl_ms=1000,
        mcp_timeout_ms=500,
        mcp_tool_mode="simple",
        mcp_use_mock=True,
        mcp_simulated_delay_ms=10,
        llm_use_mock=True,
        llm_mock_delay_ms=0,
        record_mirror_dir="",
        log_dir="",
    )


@pytest.fixture(autouse=True)
def reset_sse_exit_event():
    """sse-starlette caches an exit event bound to the first event loop."""
    from sse_starlette import sse

    app_status = getattr(sse, "AppStatus", None)
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None
    yield
