"""Unit tests for safe_bash.autoupdate: throttling, fetching and atomic install."""

import json
import os
from unittest import mock

import pytest

from safe_bash import autoupdate
from safe_bash.config import load_settings

DOCUMENT = {"version": 1, "deny": [{"pattern": r"\bgit\s+clean\b", "reason": "no git clean"}]}


@pytest.fixture
def settings(tmp_path):
    source = tmp_path / "source.json"
    source.write_text(json.dumps(DOCUMENT))
    return load_settings(
        {
            "SAFE_BASH_HOOKS_DIR": str(tmp_path / "hooks"),
            "SAFE_BASH_UPDATE_URL": source.as_uri(),
        }
    )


def read_json(path):
    return json.loads(path.read_text())


class TestState:
    def test_missing_state_reads_as_never_fetched(self, tmp_path):
        assert autoupdate.read_state(tmp_path / "absent.json") == {
            "last_fetch_epoch": 0,
            "last_attempt_epoch": 0,
        }

    @pytest.mark.parametrize(
        "content",
        ["{", "[]", '{"last_fetch_epoch": "soon"}', '{"last_fetch_epoch": true}'],
        ids=["malformed", "array", "string-epoch", "bool-epoch"],
    )
    def test_corrupt_state_reads_as_never_fetched(self, tmp_path, content):
        path = tmp_path / "state.json"
        path.write_text(content)
        assert autoupdate.read_state(path)["last_fetch_epoch"] == 0

    def test_write_state_merges(self, tmp_path):
        path = tmp_path / "state.json"
        autoupdate.write_state(path, last_fetch_epoch=10)
        autoupdate.write_state(path, last_attempt_epoch=20)
        assert read_json(path) == {"last_fetch_epoch": 10, "last_attempt_epoch": 20}

    @pytest.mark.parametrize(
        "state, now, expected",
        [
            ({"last_fetch_epoch": 0, "last_attempt_epoch": 0}, 1000, False),
            ({"last_fetch_epoch": 0, "last_attempt_epoch": 0}, 5000, True),
            ({"last_fetch_epoch": 1000, "last_attempt_epoch": 0}, 4599, False),
            ({"last_fetch_epoch": 1000, "last_attempt_epoch": 0}, 4600, True),
            ({"last_fetch_epoch": 0, "last_attempt_epoch": 1000}, 4599, False),
            ({"last_fetch_epoch": 9000, "last_attempt_epoch": 0}, 5000, True),
        ],
        ids=["fresh-epoch", "stale", "just-fetched", "interval-elapsed", "recent-attempt", "clock-skew"],
    )
    def test_update_needed(self, state, now, expected):
        assert autoupdate.update_needed(state, now, 3600) is expected


class TestAtomicWrite:
    def test_creates_parent_and_replaces(self, tmp_path):
        path = tmp_path / "nested" / "file.json"
        autoupdate.atomic_write(path, b"one")
        autoupdate.atomic_write(path, b"two")
        assert path.read_bytes() == b"two"
        assert sorted(os.listdir(path.parent)) == ["file.json"]

    def test_readers_see_old_content_until_rename(self, tmp_path):
        path = tmp_path / "file.json"
        path.write_bytes(b"old")
        seen = []
        real_replace = os.replace

        def spy(src, dst):
            seen.append(path.read_bytes())
            real_replace(src, dst)

        with mock.patch.object(autoupdate.os, "replace", side_effect=spy):
            autoupdate.atomic_write(path, b"new")
        assert seen == [b"old"]
        assert path.read_bytes() == b"new"

    def test_failed_write_leaves_no_temp_file(self, tmp_path):
        path = tmp_path / "file.json"
        path.write_bytes(b"old")
        with mock.patch.object(autoupdate.os, "replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                autoupdate.atomic_write(path, b"new")
        assert path.read_bytes() == b"old"
        assert os.listdir(tmp_path) == ["file.json"]


class TestFetchDocument:
    def test_file_url(self, tmp_path):
        source = tmp_path / "doc.json"
        source.write_bytes(b'{"version": 1}')
        assert autoupdate.fetch_document(source.as_uri(), 1) == b'{"version": 1}'

    @pytest.mark.parametrize("url", ["ftp://example.com/x.json", "/etc/passwd", "data:,{}"])
    def test_unsupported_scheme(self, url):
        with pytest.raises(ValueError, match="unsupported URL scheme"):
            autoupdate.fetch_document(url, 1)

    def test_oversized_document(self, tmp_path):
        source = tmp_path / "doc.json"
        source.write_bytes(b" " * (autoupdate.MAX_DOCUMENT_BYTES + 1))
        with pytest.raises(ValueError, match="exceeds"):
            autoupdate.fetch_document(source.as_uri(), 1)

    def test_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            autoupdate.fetch_document((tmp_path / "absent.json").as_uri(), 1)


class TestRefresh:
    def test_installs_document_and_records_fetch(self, settings):
        assert autoupdate.refresh(settings, now=12345)
        assert read_json(settings.patterns_path) == DOCUMENT
        assert read_json(settings.state_path)["last_fetch_epoch"] == 12345

    @pytest.mark.parametrize(
        "content",
        [
            "{not json",
            json.dumps({"version": 2, "deny": []}),
            json.dumps({"version": 1, "deny": [{"pattern": "(", "reason": "x"}]}),
            json.dumps({"version": 1, "allow": [{"pattern": "ok"}]}),
        ],
        ids=["malformed", "future-version", "bad-regex", "missing-reason"],
    )
    def test_invalid_document_leaves_previous_in_place(self, settings, tmp_path, content):
        settings.hooks_dir.mkdir(parents=True)
        settings.patterns_path.write_text("previous")
        autoupdate.write_state(settings.state_path, last_fetch_epoch=100)
        (tmp_path / "source.json").write_text(content)

        assert not autoupdate.refresh(settings, now=99999)
        assert settings.patterns_path.read_text() == "previous"
        assert read_json(settings.state_path)["last_fetch_epoch"] == 100

    def test_network_failure(self, settings, tmp_path):
        (tmp_path / "source.json").unlink()
        assert not autoupdate.refresh(settings)
        assert not settings.patterns_path.exists()

    def test_http_errors_are_caught(self, settings):
        with mock.patch.object(
            autoupdate, "fetch_document", side_effect=autoupdate.http.client.IncompleteRead(b"")
        ):
            assert not autoupdate.refresh(settings)

    def test_refresh_logs_outcome(self, settings, caplog):
        with caplog.at_level("INFO", logger="safe_bash"):
            autoupdate.refresh(settings)
        assert "Installed ruleset v1 (1 deny, 0 allow)" in caplog.text


class TestMaybeUpdate:
    def test_throttles_to_one_spawn_per_interval(self, settings):
        with mock.patch.object(autoupdate.subprocess, "Popen") as popen:
            assert autoupdate.maybe_update(settings, now=100_000)
            assert not autoupdate.maybe_update(settings, now=100_060)
            assert popen.call_count == 1
            assert autoupdate.maybe_update(settings, now=100_000 + 3600)
            assert popen.call_count == 2

    def test_records_attempt_before_spawning(self, settings):
        def check_state(*args, **kwargs):
            assert read_json(settings.state_path)["last_attempt_epoch"] == 100_000
            return mock.Mock()

        with mock.patch.object(autoupdate.subprocess, "Popen", side_effect=check_state) as popen:
            autoupdate.maybe_update(settings, now=100_000)
        assert popen.called

    def test_spawn_is_detached(self, settings):
        with mock.patch.object(autoupdate.subprocess, "Popen") as popen:
            autoupdate.maybe_update(settings, now=100_000)
        args, kwargs = popen.call_args
        assert args[0][1:] == ["-m", "safe_bash", "--refresh"]
        assert kwargs["start_new_session"] is True
        assert kwargs["stdout"] is autoupdate.subprocess.DEVNULL
        assert kwargs["stderr"] is autoupdate.subprocess.DEVNULL
        assert kwargs["env"]["SAFE_BASH_HOOKS_DIR"] == str(settings.hooks_dir)
        assert kwargs["env"]["SAFE_BASH_UPDATE_URL"] == settings.update_url

    def test_failed_attempt_waits_full_interval(self, settings):
        with mock.patch.object(autoupdate.subprocess, "Popen", side_effect=OSError("no fork")):
            assert not autoupdate.maybe_update(settings, now=100_000)
        with mock.patch.object(autoupdate.subprocess, "Popen") as popen:
            assert not autoupdate.maybe_update(settings, now=100_100)
        popen.assert_not_called()

    def test_unwritable_state_never_spawns(self, settings):
        settings.hooks_dir.parent.mkdir(parents=True, exist_ok=True)
        settings.hooks_dir.write_text("not a directory")
        with mock.patch.object(autoupdate.subprocess, "Popen") as popen:
            assert not autoupdate.maybe_update(settings, now=100_000)
        popen.assert_not_called()
