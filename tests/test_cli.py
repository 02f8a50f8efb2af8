import os
import pickle

import pytest

from resumable import cli
from resumable.write_channel import MIN_CHUNK_SIZE

MODULE = "resumable.cli"


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "source.bin"
    path.write_bytes(os.urandom(3 * MIN_CHUNK_SIZE + 321))
    return path


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("chunk_size: 256K\n")
    return path


def interrupted_copy(source, channel):
    channel.write(source.read(MIN_CHUNK_SIZE + 1000))
    raise KeyboardInterrupt()


class TestMain:
    def test_upload(self, tmp_path, source):
        destination = tmp_path / "out" / "object.bin"

        assert cli.main([str(source), str(destination)]) == 0

        assert destination.read_bytes() == source.read_bytes()

    def test_interrupted_upload_without_state_file_raises(self, mocker, tmp_path, source):
        mocker.patch(f"{MODULE}.copy_to_channel", side_effect=interrupted_copy)

        with pytest.raises(KeyboardInterrupt):
            cli.main([str(source), str(tmp_path / "object.bin")])

        # The session was cancelled, so no part file is left behind.
        assert list(tmp_path.glob("object.bin.*.part")) == []
        assert not (tmp_path / "object.bin").exists()

    def test_failed_upload_without_state_file_is_aborted(self, mocker, tmp_path, source, capsys):
        mocker.patch(f"{MODULE}.copy_to_channel", side_effect=OSError("disk went away"))

        with pytest.raises(OSError):
            cli.main([str(source), str(tmp_path / "object.bin")])

        assert list(tmp_path.glob("object.bin.*.part")) == []
        assert "disk went away" in capsys.readouterr().err

    def test_missing_source_starts_nothing(self, tmp_path, capsys):
        state_file = tmp_path / "upload.state"
        destination = tmp_path / "out" / "object.bin"

        result = cli.main(
            [str(tmp_path / "nope.bin"), str(destination), "--state-file", str(state_file)]
        )

        assert result == 1
        err = capsys.readouterr().err
        assert "nope.bin" in err
        assert "No such file" in err
        assert not state_file.exists()
        assert not (tmp_path / "out").exists()

    def test_failure_with_state_file_is_reported(self, mocker, tmp_path, source, capsys):
        state_file = tmp_path / "upload.state"
        mocker.patch(f"{MODULE}.copy_to_channel", side_effect=RuntimeError("403 Forbidden"))

        result = cli.main(
            [str(source), str(tmp_path / "object.bin"), "--state-file", str(state_file)]
        )

        assert result == 1
        assert "403 Forbidden" in capsys.readouterr().err
        assert state_file.exists()

    def test_resume_after_interruption(self, mocker, tmp_path, source, config_file):
        destination = tmp_path / "object.bin"
        state_file = tmp_path / "upload.state"
        args = [
            str(source),
            str(destination),
            "-c",
            str(config_file),
            "--state-file",
            str(state_file),
        ]

        copy = mocker.patch(f"{MODULE}.copy_to_channel", side_effect=interrupted_copy)
        assert cli.main(args) == 1
        assert state_file.exists()
        assert not destination.exists()

        state = cli.load_state(str(state_file))
        assert state.position == MIN_CHUNK_SIZE
        assert len(state.buffer) == 1000

        mocker.stop(copy)
        assert cli.main(args) == 0

        assert destination.read_bytes() == source.read_bytes()
        assert not state_file.exists()

    def test_state_file_for_another_destination(self, mocker, tmp_path, source):
        state_file = tmp_path / "upload.state"
        mocker.patch(f"{MODULE}.copy_to_channel", side_effect=interrupted_copy)
        cli.main([str(source), str(tmp_path / "a.bin"), "--state-file", str(state_file)])

        result = cli.main(
            [str(source), str(tmp_path / "b.bin"), "--state-file", str(state_file)]
        )

        assert result == 1
        assert state_file.exists()

    def test_invalid_config(self, tmp_path, source):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("chunk: 5\n")

        result = cli.main([str(source), str(tmp_path / "object.bin"), "-c", str(config_file)])

        assert result == 1


class TestStateFile:
    def test_not_a_state(self, tmp_path):
        path = tmp_path / "upload.state"
        path.write_bytes(pickle.dumps({"position": 5}))

        with pytest.raises(ValueError):
            cli.load_state(str(path))
