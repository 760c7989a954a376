import logging

import pytest

from main import configure_logging


@pytest.fixture
def restore_root_level():
    root = logging.getLogger()
    previous = root.level
    yield root
    root.setLevel(previous)


def test_configure_logging_sets_root_level(restore_root_level):
    configure_logging("debug")
    assert restore_root_level.level == logging.DEBUG

    configure_logging("INFO")
    assert restore_root_level.level == logging.INFO
    assert restore_root_level.handlers
    for name in ("fusion.trust_manager", "services.trainer", "routers.trust"):
        assert logging.getLogger(name).isEnabledFor(logging.INFO)
        assert not logging.getLogger(name).isEnabledFor(logging.DEBUG)


@pytest.mark.asyncio
async def test_rejected_requests_are_logged(fusion_client, fusion_services, caplog):
    with caplog.at_level(logging.WARNING, logger="routers"):
        empty = await fusion_client.post("/categorize/vote", json={})
        fusion_services.config.FEEDBACK_LEARNING_ENABLED = False
        disabled = await fusion_client.post(
            "/feedback/tab_save", json={"item": {"url": "https://c.example.com"}, "category": 3}
        )

    assert empty.status_code == 422
    assert disabled.status_code == 503
    assert "Rejected vote request with no source predictions" in caplog.text
    assert "FEEDBACK_LEARNING_ENABLED is off" in caplog.text
