"""Unit tests for main.py - Application wiring."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from config import Config
from main import Application
from plugins.registry import reset_registry


@pytest.fixture(autouse=True)
def clean_registry():
    reset_registry()
    yield
    reset_registry()


@pytest.fixture
def app_config():
    cfg = Config.default()
    cfg.api.enabled = False
    return cfg


@pytest.mark.asyncio
class TestApplication:
    """Tests for Application."""

    async def test_initialize(self, app_config):
        informers = {name: MagicMock() for name in (
            "clusters", "deployments", "statefulsets", "service_accounts", "services"
        )}
        with patch("main.new_api_client", AsyncMock()) as new_api_client, \
                patch("main.build_informers", return_value=informers), \
                patch("main.ElasticsearchController") as controller_cls:
            app = Application(app_config)
            await app.initialize()

        new_api_client.assert_awaited_once_with(app_config.kube)
        kwargs = controller_cls.call_args.kwargs
        assert kwargs["clusters"] is informers["clusters"]
        assert kwargs["strategy"].name == "logging"
        assert app.controller is controller_cls.return_value
        assert app.api_server is None

    async def test_initialize_creates_api_server(self, app_config):
        app_config.api.enabled = True
        with patch("main.new_api_client", AsyncMock()), \
                patch("main.build_informers", return_value={
                    name: MagicMock() for name in (
                        "clusters", "deployments", "statefulsets", "service_accounts", "services"
                    )
                }), \
                patch("main.ElasticsearchController", MagicMock()), \
                patch("main.create_app") as create_app:
            app = Application(app_config)
            await app.initialize()
        create_app.assert_called_once_with(app.controller, app.event_bus)
        assert app.api_server is not None

    async def test_unknown_strategy(self, app_config):
        app_config.strategy.name = "helm"
        with patch("main.new_api_client", AsyncMock()):
            with pytest.raises(ValueError, match="Unknown convergence strategy: helm"):
                await Application(app_config).initialize()

    async def test_run_shuts_down(self, app_config):
        app = Application(app_config)
        app.controller = MagicMock()
        app.controller.informers = []
        app.controller.run = AsyncMock()
        app.api_client = MagicMock()
        app.api_client.close = AsyncMock()
        api_client = app.api_client

        await app.run()

        app.controller.run.assert_awaited_once_with(5, app.stop_event)
        api_client.close.assert_awaited_once()
        assert app.stop_event.is_set()
        assert app.api_client is None

    async def test_stop_is_idempotent(self, app_config):
        app = Application(app_config)
        app.stop()
        app.stop()
        assert app.stop_event.is_set()
