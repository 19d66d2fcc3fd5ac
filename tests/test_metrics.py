"""
Unit Tests for the Metrics Abstraction Layer

Test Coverage:
- MetricsClient interface implementations
- Backend selection via factory function
- Error handling on close
"""

from unittest.mock import AsyncMock, Mock, patch

import pytest

from social.graze.signin.app.metrics import (
    MetricsClient,
    NoOpMetricsClient,
    TelegrafCompatibilityClient,
    create_metrics_client,
)


class TestMetricsClientInterface:
    def test_interface_is_abstract(self):
        """MetricsClient should be abstract and not instantiable."""
        with pytest.raises(TypeError):
            MetricsClient()  # type: ignore


class TestNoOpMetricsClient:
    @pytest.fixture
    def noop_client(self):
        return NoOpMetricsClient()

    def test_noop_operations(self, noop_client):
        """NoOp operations should not raise exceptions."""
        noop_client.increment("test.counter", 1, {"tag": "value"})
        noop_client.increment("test.counter")
        noop_client.gauge("test.gauge", 42.5, {"tag": "value"})
        noop_client.timer("test.timer", 0.25)

    @pytest.mark.asyncio
    async def test_noop_connect_and_close(self, noop_client):
        await noop_client.connect()
        await noop_client.close()


class TestTelegrafCompatibilityClient:
    @pytest.fixture
    def mock_telegraf_client(self):
        client = Mock()
        client.connect = AsyncMock()
        client.close = AsyncMock()
        return client

    @pytest.fixture
    def telegraf_client(self, mock_telegraf_client):
        return TelegrafCompatibilityClient(mock_telegraf_client)

    def test_telegraf_increment(self, telegraf_client, mock_telegraf_client):
        telegraf_client.increment("signin.callback.result", 1, {"outcome": "success"})

        mock_telegraf_client.increment.assert_called_once_with(
            "signin.callback.result", 1, tag_dict={"outcome": "success"}
        )

    def test_telegraf_increment_no_tags(self, telegraf_client, mock_telegraf_client):
        telegraf_client.increment("signin.callback.result")

        mock_telegraf_client.increment.assert_called_once_with(
            "signin.callback.result", 1, tag_dict={}
        )

    def test_telegraf_gauge(self, telegraf_client, mock_telegraf_client):
        telegraf_client.gauge("test.gauge", 7, {"a": "b"})

        mock_telegraf_client.gauge.assert_called_once_with(
            "test.gauge", 7, tag_dict={"a": "b"}
        )

    def test_telegraf_timer(self, telegraf_client, mock_telegraf_client):
        telegraf_client.timer("signin.client.request.time", 0.5)

        mock_telegraf_client.timer.assert_called_once_with(
            "signin.client.request.time", 0.5, tag_dict={}
        )

    @pytest.mark.asyncio
    async def test_telegraf_connect_and_close(
        self, telegraf_client, mock_telegraf_client
    ):
        await telegraf_client.connect()
        await telegraf_client.close()

        mock_telegraf_client.connect.assert_awaited_once()
        mock_telegraf_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_telegraf_close_error_handling(
        self, telegraf_client, mock_telegraf_client
    ):
        mock_telegraf_client.close = AsyncMock(side_effect=OSError("closed"))

        await telegraf_client.close()


class TestMetricsClientFactory:
    def test_factory_creates_noop_client(self):
        assert isinstance(create_metrics_client("none"), NoOpMetricsClient)

    @patch("social.graze.signin.app.metrics.TelegrafStatsdClient")
    def test_factory_creates_telegraf_client(self, mock_telegraf_class):
        client = create_metrics_client(
            "telegraf", host="telegraf.local", port=9125, debug=True
        )

        assert isinstance(client, TelegrafCompatibilityClient)
        mock_telegraf_class.assert_called_once_with(
            host="telegraf.local", port=9125, debug=True
        )

    def test_factory_uses_preconfigured_telegraf_client(self):
        preconfigured = Mock()

        client = create_metrics_client("telegraf", telegraf_client=preconfigured)

        assert client.client is preconfigured  # type: ignore

    def test_factory_is_case_insensitive(self):
        assert isinstance(create_metrics_client("NONE"), NoOpMetricsClient)

    def test_factory_handles_invalid_backend(self):
        with pytest.raises(ValueError, match="Invalid metrics backend"):
            create_metrics_client("otel")
