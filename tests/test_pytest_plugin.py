"""Tests for the pytest plugin hooks."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from bochka import pytest_plugin


@pytest.fixture(autouse=True)
def _reset_cache():
    pytest_plugin._docker_available = None
    yield
    pytest_plugin._docker_available = None


def _item(marked: bool):
    item = MagicMock()
    item.get_closest_marker.return_value = object() if marked else None
    return item


class TestDockerSkip:
    @patch("bochka.pytest_plugin.DockerRuntime.is_docker_available", return_value=False)
    def test_docker_tests_skipped_without_daemon(self, mock_available):
        docker_item, plain_item = _item(True), _item(False)

        pytest_plugin.pytest_collection_modifyitems(MagicMock(), [docker_item, plain_item])

        docker_item.add_marker.assert_called_once()
        plain_item.add_marker.assert_not_called()

    @patch("bochka.pytest_plugin.DockerRuntime.is_docker_available", return_value=True)
    def test_nothing_skipped_with_daemon(self, mock_available):
        docker_item = _item(True)

        pytest_plugin.pytest_collection_modifyitems(MagicMock(), [docker_item])

        docker_item.add_marker.assert_not_called()

    @patch("bochka.pytest_plugin.DockerRuntime.is_docker_available", return_value=True)
    def test_availability_is_cached(self, mock_available):
        pytest_plugin.pytest_collection_modifyitems(MagicMock(), [_item(True)])
        pytest_plugin.pytest_collection_modifyitems(MagicMock(), [_item(True)])

        mock_available.assert_called_once()

    @patch("bochka.pytest_plugin.DockerRuntime.is_docker_available")
    def test_no_probe_without_docker_tests(self, mock_available):
        pytest_plugin.pytest_collection_modifyitems(MagicMock(), [_item(False)])

        mock_available.assert_not_called()

    @patch.dict("os.environ", {"BOCHKA_DOCKER_CMD": "podman"})
    @patch("bochka.pytest_plugin.DockerRuntime.is_docker_available", return_value=True)
    def test_configured_cli_is_probed(self, mock_available):
        pytest_plugin.pytest_collection_modifyitems(MagicMock(), [_item(True)])

        mock_available.assert_called_once_with("podman")


class TestConfigure:
    @patch("bochka.pytest_plugin.configure_logging")
    def test_log_level_option(self, mock_configure):
        config = MagicMock()
        config.getoption.return_value = "DEBUG"

        pytest_plugin.pytest_configure(config)

        mock_configure.assert_called_once_with(level="DEBUG", json_format=False)
        config.addinivalue_line.assert_called_once()

    @patch("bochka.pytest_plugin.configure_logging")
    def test_no_option_leaves_logging_alone(self, mock_configure):
        config = MagicMock()
        config.getoption.return_value = None

        pytest_plugin.pytest_configure(config)

        mock_configure.assert_not_called()
