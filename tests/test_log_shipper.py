"""Tests for the log-shipping buffer and its logging handler."""

import json
import logging
from unittest.mock import Mock

import httpx
import pytest

from vetdesk.core.log_shipper import LogShipper, LogShippingHandler


def make_client(fail=False):
    client = Mock()
    if fail:
        client.post.side_effect = httpx.ConnectError("connection refused")
    else:
        client.post.return_value = Mock(raise_for_status=Mock())
    return client


def entry(n):
    return {"level": "INFO", "message": f"line {n}"}


class TestBuffering:

    def test_flushes_when_batch_is_full(self):
        client = make_client()
        shipper = LogShipper("https://logs.example.com/ingest", batch_size=2, client=client)

        shipper.enqueue(entry(1))
        client.post.assert_not_called()
        shipper.enqueue(entry(2))

        client.post.assert_called_once()
        assert client.post.call_args.kwargs["json"] == {"logs": [entry(1), entry(2)]}
        assert shipper.pending_count() == 0

    def test_bearer_token_sent(self):
        client = make_client()
        shipper = LogShipper("https://logs.example.com/ingest", token="tok", batch_size=1, client=client)
        shipper.enqueue(entry(1))
        assert client.post.call_args.kwargs["headers"]["Authorization"] == "Bearer tok"

    def test_no_token_no_auth_header(self):
        client = make_client()
        shipper = LogShipper("https://logs.example.com/ingest", batch_size=1, client=client)
        shipper.enqueue(entry(1))
        assert "Authorization" not in client.post.call_args.kwargs["headers"]

    def test_overflow_drops_oldest(self):
        client = make_client()
        shipper = LogShipper("https://logs.example.com/ingest", batch_size=100, max_buffer=3, client=client)
        for n in range(5):
            shipper.enqueue(entry(n))

        assert shipper.pending_count() == 3
        assert shipper.dropped == 2
        shipper.flush()
        assert client.post.call_args.kwargs["json"]["logs"] == [entry(2), entry(3), entry(4)]

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            LogShipper("https://logs.example.com/ingest", batch_size=0)

    def test_flush_empty_buffer(self):
        client = make_client()
        shipper = LogShipper("https://logs.example.com/ingest", client=client)
        assert shipper.flush() == 0
        client.post.assert_not_called()


class TestRetryOnce:

    def test_failed_batch_is_requeued_once(self):
        client = make_client(fail=True)
        shipper = LogShipper("https://logs.example.com/ingest", batch_size=10, client=client)
        shipper.enqueue(entry(1))
        shipper.enqueue(entry(2))

        assert shipper.flush() == 0
        assert shipper.pending_count() == 2
        assert shipper.dropped == 0

    def test_second_failure_drops_entries(self):
        client = make_client(fail=True)
        shipper = LogShipper("https://logs.example.com/ingest", batch_size=10, client=client)
        shipper.enqueue(entry(1))

        shipper.flush()
        shipper.flush()

        assert shipper.pending_count() == 0
        assert shipper.dropped == 1
        assert client.post.call_count == 2

    def test_requeued_entries_go_out_before_new_ones(self):
        client = make_client(fail=True)
        shipper = LogShipper("https://logs.example.com/ingest", batch_size=10, client=client)
        shipper.enqueue(entry(1))
        shipper.flush()

        client.post.side_effect = None
        client.post.return_value = Mock(raise_for_status=Mock())
        shipper.enqueue(entry(2))

        assert shipper.flush() == 2
        assert client.post.call_args.kwargs["json"]["logs"] == [entry(1), entry(2)]

    def test_http_error_status_counts_as_failure(self):
        client = Mock()
        request = httpx.Request("POST", "https://logs.example.com/ingest")
        response = httpx.Response(503, request=request)
        client.post.return_value = response
        shipper = LogShipper("https://logs.example.com/ingest", batch_size=10, client=client)
        shipper.enqueue(entry(1))

        assert shipper.flush() == 0
        assert shipper.pending_count() == 1


class TestLifecycle:

    def test_timer_tick_flushes_and_reschedules(self):
        client = make_client()
        shipper = LogShipper("https://logs.example.com/ingest", batch_size=10, flush_interval=60, client=client)
        shipper.enqueue(entry(1))

        shipper._on_timer()

        client.post.assert_called_once()
        assert shipper._timer is not None
        shipper.close()
        assert shipper._timer is None

    def test_close_flushes_and_rejects_new_entries(self):
        client = make_client()
        shipper = LogShipper("https://logs.example.com/ingest", batch_size=10, flush_interval=60, client=client)
        shipper.start()
        shipper.enqueue(entry(1))

        shipper.close()
        client.post.assert_called_once()

        shipper.enqueue(entry(2))
        assert shipper.pending_count() == 0

    def test_start_after_close_is_noop(self):
        shipper = LogShipper("https://logs.example.com/ingest", client=make_client())
        shipper.close()
        shipper.start()
        assert shipper._timer is None


class TestLogShippingHandler:

    def _record(self, name="vetdesk.services.cases_service", msg="Ingested case %s", args=("abc",)):
        return logging.LogRecord(name, logging.INFO, __file__, 10, msg, args, None)

    def test_record_becomes_entry(self):
        shipper = Mock()
        handler = LogShippingHandler(shipper, service="vetdesk", environment="test")

        handler.emit(self._record())

        shipped = shipper.enqueue.call_args.args[0]
        assert shipped["message"] == "Ingested case abc"
        assert shipped["level"] == "INFO"
        assert shipped["logger"] == "vetdesk.services.cases_service"
        assert shipped["service"] == "vetdesk"
        assert shipped["environment"] == "test"

    @pytest.mark.parametrize("name", ["vetdesk.core.log_shipper", "httpx", "httpcore.connection"])
    def test_shipping_noise_is_filtered(self, name):
        shipper = Mock()
        handler = LogShippingHandler(shipper, service="vetdesk", environment="test")

        handler.handle(self._record(name=name, msg="HTTP Request: POST https://logs.example.com", args=()))

        shipper.enqueue.assert_not_called()

    def test_records_logged_during_enqueue_are_dropped(self):
        shipper = Mock()
        handler = LogShippingHandler(shipper, service="vetdesk", environment="test")
        shipper.enqueue.side_effect = lambda entry: handler.handle(self._record(msg="nested", args=()))

        handler.handle(self._record())

        shipper.enqueue.assert_called_once()
        assert shipper.enqueue.call_args.args[0]["message"] == "Ingested case abc"

    def test_one_post_per_application_record(self):
        bodies = []

        def ingest(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200)

        client = httpx.Client(transport=httpx.MockTransport(ingest))
        shipper = LogShipper("https://logs.example.com/ingest", batch_size=1, client=client)
        handler = LogShippingHandler(shipper, service="vetdesk", environment="test")
        root = logging.getLogger()
        previous_level = root.level
        root.addHandler(handler)
        root.setLevel(logging.INFO)
        try:
            logging.getLogger("vetdesk.api.discharge").info("Discharge orchestration finished")
            logging.getLogger("vetdesk.api.discharge").info("Second line")
        finally:
            root.removeHandler(handler)
            root.setLevel(previous_level)

        assert [body["logs"][0]["message"] for body in bodies] == [
            "Discharge orchestration finished",
            "Second line",
        ]
        assert shipper.pending_count() == 0

    def test_close_closes_shipper(self):
        shipper = Mock()
        handler = LogShippingHandler(shipper, service="vetdesk", environment="test")
        handler.close()
        shipper.close.assert_called_once()
