import io

import xxhash

from utils import (
    compute_xxhash,
    compute_xxhash_stream,
    file_id_from_url,
    file_url,
    format_xxhash,
    from_mirror_url,
    linked_file_url,
    screenshot_id,
    to_download_url,
    to_mirror_url,
)

MIRROR = "https://celestemodupdater.0x0a.de/banana-mirror/"


class TestXxHash:
    def test_format_pads_to_sixteen_digits(self):
        assert format_xxhash(0x1234) == "0000000000001234"
        assert format_xxhash(0) == "0" * 16

    def test_stream_and_file_agree(self, tmp_path):
        data = b"some archive bytes" * 1000
        path = tmp_path / "blob.bin"
        path.write_bytes(data)

        expected = xxhash.xxh64(data, seed=0).hexdigest()
        assert compute_xxhash(path) == expected
        assert compute_xxhash_stream(io.BytesIO(data)) == expected

    def test_empty_input(self):
        assert compute_xxhash_stream(io.BytesIO(b"")) == xxhash.xxh64(b"").hexdigest()


class TestCatalogUrls:
    def test_download_url_uses_mirrorable_path(self):
        assert to_download_url("https://gamebanana.com/dl/484937") == (
            "https://gamebanana.com/mmdl/484937"
        )

    def test_file_id_only_for_conforming_urls(self):
        assert file_id_from_url("https://gamebanana.com/mmdl/484937") == "484937"
        assert file_id_from_url("https://gamebanana.com/mmdl/484937?x=1") is None
        assert file_id_from_url("https://example.com/mod.zip") is None

    def test_file_url(self):
        assert file_url(12) == "https://gamebanana.com/mmdl/12"

    def test_mirror_url_round_trip(self):
        mirror_url = to_mirror_url("https://gamebanana.com/mmdl/484937", MIRROR)
        assert mirror_url == MIRROR + "484937.zip"
        assert from_mirror_url(mirror_url, MIRROR) == "https://gamebanana.com/mmdl/484937"

    def test_mirror_url_for_foreign_link(self):
        assert to_mirror_url("https://example.com/mod.zip", MIRROR) is None
        assert from_mirror_url("https://example.com/484937.zip", MIRROR) is None

    def test_screenshot_id(self):
        url = "https://images.gamebanana.com/img/ss/mods/5b05ac2b4b6da.webp"
        assert screenshot_id(url) == "img_ss_mods_5b05ac2b4b6da.png"

    def test_linked_file_url_single_line_only(self):
        reason = "File https://gamebanana.com/mmdl/42 has same mod ID and is more recent"
        assert linked_file_url(reason) == "https://gamebanana.com/mmdl/42"
        assert linked_file_url("Traceback\nhttps://gamebanana.com/mmdl/42\n") is None
