import google.api_core.exceptions
import pytest

from resumable.cloud import gcs
from resumable.upload_configuration import UploadConfig
from resumable.write_channel import MIN_CHUNK_SIZE

MODULE = "resumable.cloud.gcs"

SESSION_URL = "https://storage.googleapis.com/upload/storage/v1/b/bucket/o?upload_id=abc"


def make_response(mocker, status_code, headers=None):
    response = mocker.Mock()
    response.status_code = status_code
    response.headers = headers or {}
    response.json.side_effect = ValueError("no json")
    response.text = "error body"
    return response


def persisted(mocker, end):
    return make_response(mocker, 308, {"Range": "bytes=0-{}".format(end - 1)})


@pytest.fixture
def config():
    # Retry quickly in tests.
    return UploadConfig({"retry": {"initial_delay": 0.01, "max_delay": 0.01}})


@pytest.fixture
def session(mocker):
    mocker.patch("google.auth.default", return_value=(mocker.Mock(), "project"))
    session_class = mocker.patch(f"{MODULE}.AuthorizedSession")
    return session_class.return_value


@pytest.fixture
def channel(session, config):
    channel = gcs.GCSWriteChannel(config, "gs://bucket/object", SESSION_URL)
    channel.chunk_size = MIN_CHUNK_SIZE
    return channel


def sent_ranges(session):
    return [c.kwargs["headers"]["Content-Range"] for c in session.put.call_args_list]


class TestGCSWriteChannel:
    def test_sends_chunk_with_open_ended_range(self, mocker, channel, session):
        session.put.return_value = persisted(mocker, MIN_CHUNK_SIZE)
        data = b"a" * MIN_CHUNK_SIZE

        channel.write(data)

        session.put.assert_called_once_with(
            SESSION_URL,
            data=data,
            headers={"Content-Range": "bytes 0-262143/*"},
        )
        assert channel.position == MIN_CHUNK_SIZE

    def test_final_chunk_carries_total_size(self, mocker, channel, session):
        session.put.side_effect = [
            persisted(mocker, MIN_CHUNK_SIZE),
            make_response(mocker, 200),
        ]

        channel.write(b"a" * (MIN_CHUNK_SIZE + 10))
        channel.close()

        assert sent_ranges(session) == [
            "bytes 0-262143/*",
            "bytes 262144-262153/262154",
        ]
        assert channel.position == MIN_CHUNK_SIZE + 10

    def test_empty_final_chunk(self, mocker, channel, session):
        session.put.side_effect = [
            persisted(mocker, MIN_CHUNK_SIZE),
            make_response(mocker, 201),
        ]

        channel.write(b"a" * MIN_CHUNK_SIZE)
        channel.close()

        assert sent_ranges(session) == ["bytes 0-262143/*", "bytes */262144"]
        assert session.put.call_args.kwargs["data"] == b""

    def test_resends_what_the_server_did_not_keep(self, mocker, channel, session):
        session.put.side_effect = [
            persisted(mocker, 1000),
            persisted(mocker, 2 * MIN_CHUNK_SIZE),
        ]
        data = bytes(range(256)) * (2 * MIN_CHUNK_SIZE // 256)

        channel.write(data)

        assert sent_ranges(session) == ["bytes 0-524287/*", "bytes 1000-524287/*"]
        assert session.put.call_args.kwargs["data"] == data[1000:]
        assert channel.position == 2 * MIN_CHUNK_SIZE

    def test_no_progress_raises(self, mocker, channel, session):
        session.put.return_value = make_response(mocker, 308)

        with pytest.raises(RuntimeError):
            channel.write(b"a" * MIN_CHUNK_SIZE)

        assert channel.position == 0
        assert channel.limit == 0

    def test_retries_transient_errors(self, mocker, channel, session):
        session.put.side_effect = [
            make_response(mocker, 503),
            persisted(mocker, MIN_CHUNK_SIZE),
        ]

        channel.write(b"a" * MIN_CHUNK_SIZE)

        assert session.put.call_count == 2
        assert channel.position == MIN_CHUNK_SIZE

    def test_fatal_error_propagates(self, mocker, channel, session):
        session.put.return_value = make_response(mocker, 404)
        channel.write(b"abc")

        with pytest.raises(google.api_core.exceptions.NotFound):
            channel.close()

        session.put.assert_called_once()
        assert channel.is_open()
        assert channel.position == 0

    def test_restored_channel_continues_at_position(self, mocker, channel, session):
        session.put.return_value = persisted(mocker, MIN_CHUNK_SIZE)
        channel.write(b"a" * (MIN_CHUNK_SIZE + 5))
        state = channel.capture()

        restored = state.restore()
        session.put.return_value = make_response(mocker, 200)
        restored.close()

        assert sent_ranges(session)[-1] == "bytes 262144-262148/262149"

    def test_abort(self, mocker, channel, session):
        session.delete.return_value = make_response(mocker, 499)

        channel.abort()

        session.delete.assert_called_once_with(SESSION_URL)
        assert not channel.is_open()


class TestStartUpload:
    def test_creates_session(self, mocker, session, config):
        client_class = mocker.patch("google.cloud.storage.Client")
        bucket = client_class.return_value.bucket.return_value
        blob = bucket.blob.return_value
        blob.create_resumable_upload_session.return_value = SESSION_URL

        channel = gcs.start_upload("gs://bucket/path/to/object/", config)

        client_class.return_value.bucket.assert_called_once_with("bucket")
        bucket.blob.assert_called_once_with("path/to/object")
        blob.create_resumable_upload_session.assert_called_once_with(
            content_type="application/octet-stream"
        )
        assert blob.cache_control == "no-cache"
        assert channel.upload_id == SESSION_URL
        assert channel.entity == "gs://bucket/path/to/object/"
