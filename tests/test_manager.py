"""Tests for manager.py and cli.py."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pizzeria.cli import build_parser, main
from pizzeria.config import ControllerConfig, Settings
from pizzeria.core.errors import ConfigurationError, ExitCode, NotFoundError
from pizzeria.domain.models import Job, ObjectKey, ObjectMeta, Order
from pizzeria.manager import Manager, build_scheme, create_store
from pizzeria.reconciler import Result
from pizzeria.store import InMemoryStore, KubernetesStore


@pytest.fixture
def settings():
    return Settings(store_backend="memory", _env_file=None)


class TestCreateStore:
    def test_memory(self, settings):
        assert isinstance(create_store(settings, ControllerConfig()), InMemoryStore)

    def test_kubernetes(self):
        settings = Settings(
            store_backend="kubernetes", namespace="kitchen", request_timeout=4.0, _env_file=None
        )

        store = create_store(settings, ControllerConfig.from_settings(settings))

        assert isinstance(store, KubernetesStore)
        assert store.namespace == "kitchen"
        assert store.request_timeout == 4.0

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError):
            create_store(Settings(store_backend="etcd", _env_file=None), ControllerConfig())


class TestManager:
    def test_scheme_uses_configured_kind(self):
        config = ControllerConfig(group="kitchen.example.com", version="v2", kind="Calzone")
        scheme = build_scheme(config)

        gvk = scheme.gvk_for(Order(metadata=ObjectMeta(name="c", namespace="default")))
        assert gvk.api_version == "kitchen.example.com/v2"
        assert gvk.kind == "Calzone"

    def test_registers_owner_index(self, settings):
        manager = Manager(settings)

        job = Job(metadata=ObjectMeta(name="margherita-1", namespace="default"))

        # Querying an unregistered field would raise ConfigurationError.
        assert manager.store.field_indexer.matches(job, {".metadata.controller": "margherita"}) is False

    def test_price_from_settings(self):
        manager = Manager(Settings(store_backend="memory", ready_price=9, _env_file=None))

        assert manager.reconciler.pricing.price_for(None) == 9

    @pytest.mark.asyncio
    async def test_single_reconcile(self, settings, make_order):
        store = InMemoryStore()
        manager = Manager(settings, store=store)
        await store.create_order(make_order())

        result = await manager.reconcile(ObjectKey("default", "margherita"))

        assert result == Result()
        assert len(await store.list_jobs("default")) == 1


class TestCli:
    @pytest.fixture
    def cli_settings(self):
        return Settings(store_backend="kubernetes", _env_file=None)

    def test_parser_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    @pytest.mark.parametrize(
        "argv",
        [
            ["run", "--namespace", "kitchen"],
            ["reconcile", "kitchen/margherita", "--namespace", "kitchen"],
        ],
    )
    def test_options_follow_subcommand(self, argv):
        args = build_parser().parse_args(argv)

        assert args.namespace == "kitchen"

    def test_reconcile_command(self, cli_settings):
        with patch("pizzeria.cli.get_settings", return_value=cli_settings), patch(
            "pizzeria.cli.configure_logging"
        ), patch("pizzeria.cli.Manager") as mock_manager:
            mock_manager.return_value.reconcile = AsyncMock(return_value=Result())

            code = main(["reconcile", "default/margherita"])

        assert code == ExitCode.SUCCESS
        mock_manager.return_value.reconcile.assert_awaited_once_with(
            ObjectKey("default", "margherita")
        )

    def test_reconcile_rejects_memory_backend(self, settings):
        with patch("pizzeria.cli.get_settings", return_value=settings), patch(
            "pizzeria.cli.configure_logging"
        ), patch("pizzeria.cli.Manager") as mock_manager:
            code = main(["reconcile", "default/margherita"])

        assert code == ExitCode.CONFIG_ERROR
        mock_manager.assert_not_called()

    def test_invalid_settings_are_config_errors(self, monkeypatch):
        monkeypatch.setenv("PIZZERIA_REQUEST_TIMEOUT", "20")
        monkeypatch.setenv("PIZZERIA_RECONCILE_TIMEOUT", "30")
        with patch("pizzeria.cli.get_settings", side_effect=lambda: Settings(_env_file=None)), patch(
            "pizzeria.cli.Manager"
        ) as mock_manager:
            code = main(["run"])

        assert code == ExitCode.CONFIG_ERROR
        mock_manager.assert_not_called()

    def test_invalid_key(self, cli_settings):
        with patch("pizzeria.cli.get_settings", return_value=cli_settings), patch(
            "pizzeria.cli.configure_logging"
        ), patch("pizzeria.cli.Manager"):
            code = main(["reconcile", "margherita"])

        assert code == ExitCode.VALIDATION_ERROR

    def test_store_error_maps_to_exit_code(self, cli_settings):
        with patch("pizzeria.cli.get_settings", return_value=cli_settings), patch(
            "pizzeria.cli.configure_logging"
        ), patch("pizzeria.cli.Manager") as mock_manager:
            mock_manager.return_value.reconcile = AsyncMock(side_effect=NotFoundError("gone"))

            code = main(["reconcile", "default/margherita"])

        assert code == ExitCode.STORE_ERROR

    def test_overrides_applied(self, settings):
        with patch("pizzeria.cli.get_settings", return_value=settings), patch(
            "pizzeria.cli.configure_logging"
        ) as mock_logging, patch("pizzeria.cli.Manager") as mock_manager, patch(
            "pizzeria.cli.asyncio.run"
        ):
            main(["run", "--namespace", "kitchen", "--log-level", "debug", "--workers", "5"])

        used = mock_manager.call_args.args[0]
        assert used.namespace == "kitchen"
        assert used.workers == 5
        mock_logging.assert_called_once_with("debug")

    def test_run_command(self, settings):
        run = MagicMock()
        with patch("pizzeria.cli.get_settings", return_value=settings), patch(
            "pizzeria.cli.configure_logging"
        ), patch("pizzeria.cli.Manager"), patch("pizzeria.cli.asyncio.run", run):
            assert main(["run"]) == ExitCode.SUCCESS

        run.assert_called_once()
