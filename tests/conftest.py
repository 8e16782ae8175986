import time

import pytest


@pytest.fixture
def central_european_tz(monkeypatch):
    """Switch the process zone to CET/CEST, with EU DST rules."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    monkeypatch.setenv("TZ", "CET-1CEST,M3.5.0,M10.5.0/3")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()
