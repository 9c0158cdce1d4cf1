"""Tests for scratch directory lifecycle."""

import logging

import pytest

from mediacompose.services.workdir import remove_scratch_directory, scratch_directory


class TestScratchDirectory:
    def test_created_and_removed(self, tmp_path):
        with scratch_directory(tmp_path) as work_dir:
            assert work_dir.is_dir()
            assert work_dir.parent == tmp_path
            assert len(work_dir.name) == 32
            (work_dir / "segment.mp4").write_bytes(b"x")
            (work_dir / "nested").mkdir()

        assert not work_dir.exists()

    def test_removed_when_body_raises(self, tmp_path):
        with pytest.raises(RuntimeError):
            with scratch_directory(tmp_path, "job123") as work_dir:
                (work_dir / "partial.mp4").write_bytes(b"x")
                raise RuntimeError("overlay failed")

        assert not (tmp_path / "job123").exists()

    def test_root_created_on_demand(self, tmp_path):
        root = tmp_path / "data" / "temp_single_api"
        with scratch_directory(root) as work_dir:
            assert work_dir.is_dir()
        assert root.is_dir()

    def test_removal_failure_is_logged(self, tmp_path, monkeypatch, caplog):
        def fail(path):
            raise OSError("device busy")

        monkeypatch.setattr("mediacompose.services.workdir.shutil.rmtree", fail)
        with caplog.at_level(logging.WARNING):
            with scratch_directory(tmp_path, "busy"):
                pass

        assert "device busy" in caplog.text

    def test_remove_missing_directory(self, tmp_path):
        assert remove_scratch_directory(tmp_path / "never-created") is True
