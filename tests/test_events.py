import logging

from events import RETRIED_IO_ERROR, EventHub, LoggingSubscriber


class TestEventHub:
    def test_fans_out_to_every_subscriber(self, recorder):
        second = []
        hub = EventHub([recorder])
        hub.subscribe(lambda name, payload: second.append(name))

        hub.emit("scanned_zip_contents", url="u", file_count=3)

        assert recorder.events == [("scanned_zip_contents", {"url": "u", "file_count": 3})]
        assert second == ["scanned_zip_contents"]

    def test_failing_subscriber_does_not_stop_others(self, recorder, caplog):
        def broken(name, payload):
            raise RuntimeError("boom")

        hub = EventHub([broken, recorder])
        with caplog.at_level(logging.ERROR):
            hub.emit("uncaught_error")

        assert recorder.names() == ["uncaught_error"]
        assert "Event subscriber failed" in caplog.text

    def test_unsubscribe(self, recorder):
        hub = EventHub([recorder])
        hub.unsubscribe(recorder)
        hub.unsubscribe(recorder)

        hub.emit("anything")

        assert recorder.events == []

    def test_retry_hook(self, recorder):
        hub = EventHub([recorder])
        error = OSError("reset")

        hub.retry_hook()(error)

        assert recorder.of(RETRIED_IO_ERROR) == [{"error": error}]

    def test_payload_may_carry_a_name(self, recorder):
        hub = EventHub([recorder])

        hub.emit("uploaded_mod_to_mirror", name="4.zip")

        assert recorder.events == [("uploaded_mod_to_mirror", {"name": "4.zip"})]


class TestLoggingSubscriber:
    def test_logs_at_debug(self, caplog):
        with caplog.at_level(logging.DEBUG):
            LoggingSubscriber()("mod_has_no_manifest", {"url": "https://x"})

        assert "mod_has_no_manifest" in caplog.text
        assert "url=https://x" in caplog.text
