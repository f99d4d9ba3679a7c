from opentelemetry import trace

from telemetry import SpanEventSubscriber, normalize_route, span_event_attributes


class TestNormalizeRoute:
    def test_numeric_segments_collapse(self):
        assert normalize_route("/mmdl/123") == "/mmdl/{id}"
        assert normalize_route("/apiv11/Mod/456/ProfilePage") == "/apiv11/Mod/{id}/ProfilePage"

    def test_empty_path(self):
        assert normalize_route("") == "/"
        assert normalize_route("/") == "/"


class TestSpanEvents:
    def test_attributes_are_flattened(self):
        error = ValueError("boom")

        assert span_event_attributes({"name": "ModA", "size": 12, "error": error, "url": None}) == {
            "name": "ModA",
            "size": 12,
            "error": "boom",
        }

    def test_no_active_span_is_ignored(self):
        assert not trace.get_current_span().is_recording()

        SpanEventSubscriber()("scanned_zip_contents", {"file": "10"})
