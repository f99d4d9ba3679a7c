import pytest

from state import CrawlState, commit_state, load_state, save_state
from storage import YamlCodec

codec = YamlCodec()


class TestPageSizes:
    def test_first_run(self):
        state = CrawlState()
        state.advance_page_sizes()

        assert state.incremental_page_size == 1
        assert state.full_page_size == 41

    def test_incremental_wraps_to_one(self):
        state = CrawlState(incremental_page_size=50)
        state.advance_page_sizes()

        assert state.incremental_page_size == 1

    def test_full_wraps_to_forty(self):
        state = CrawlState(full_page_size=50)
        state.advance_page_sizes()

        assert state.full_page_size == 40


class TestPersistence:
    def test_missing_file_gives_defaults(self, tmp_path):
        state = load_state(tmp_path / "state.yaml", codec)

        assert state == CrawlState()

    def test_save_and_commit(self, tmp_path):
        path = tmp_path / "state.yaml"
        temp_path = tmp_path / "state_temp.yaml"
        state = CrawlState({"Mod": 1700000000}, full_page_size=45, incremental_page_size=7)

        save_state(temp_path, state, codec)
        assert not path.exists()
        commit_state(temp_path, path)

        assert not temp_path.exists()
        assert load_state(path, codec) == state

    def test_unknown_version(self, tmp_path):
        path = tmp_path / "state.yaml"
        path.write_text("Version: 2\nMostRecentUpdatedDates: {}\n", encoding="utf-8")

        with pytest.raises(ValueError):
            load_state(path, codec)
