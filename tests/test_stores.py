import json

import pytest
import redis
from botocore.exceptions import ClientError

from common.bootstrap import wait_for
from common.errors import BootstrapError, ObjectNotFound, PersistenceError
from common.job_schema import Job, JobStatus
from common.status_store import status_key
from common.storage import LocalObjectStore, S3ObjectStore, get_object_store
from worker import worker as worker_module

from tests.conftest import FakeRedis, InMemoryObjectStore


class TestStatusStore:
    def test_save_writes_whole_envelope_with_expiry(self, status_store, fake_redis):
        job = Job.new("https://example.com/a.png")
        status_store.save(job)

        key, value, ex = fake_redis.writes[-1]
        assert key == f"job:{job.id}" == status_key(job.id)
        assert ex == 86400
        assert json.loads(value)["source_reference"] == "https://example.com/a.png"

    def test_every_write_refreshes_expiry(self, status_store, fake_redis):
        job = Job.new("src")
        status_store.save(job)
        job.mark_in_progress()
        status_store.save(job)
        assert [w[2] for w in fake_redis.writes] == [86400, 86400]

    def test_get_round_trip(self, status_store):
        job = Job.new("src")
        status_store.save(job)
        loaded = status_store.get(job.id)
        assert loaded.id == job.id
        assert loaded.status == JobStatus.PENDING

    def test_absent_key_is_none_not_a_status(self, status_store):
        assert status_store.get("never-submitted") is None

    def test_write_failure_is_persistence_error(self, status_store, fake_redis):
        fake_redis.fail_writes = True
        with pytest.raises(PersistenceError):
            status_store.save(Job.new("src"))

    def test_ping_reaches_redis(self, status_store, fake_redis):
        def refuse():
            raise redis.ConnectionError("refused")

        fake_redis.ping = refuse
        with pytest.raises(redis.ConnectionError):
            status_store.ping()

    def test_corrupt_record_is_persistence_error(self, status_store, fake_redis):
        fake_redis.values["job:bad"] = b"{oops"
        with pytest.raises(PersistenceError):
            status_store.get("bad")


class TestJobQueue:
    def test_fifo_reserve_and_ack(self, job_queue, fake_redis):
        first, second = Job.new("a"), Job.new("b")
        job_queue.publish(first)
        job_queue.publish(second)

        delivery = job_queue.reserve(timeout=1)
        assert Job.from_json(delivery.body).id == first.id
        assert fake_redis.lists[job_queue.inflight] == [delivery.body]

        job_queue.ack(delivery)
        assert fake_redis.lists[job_queue.inflight] == []

    def test_reserve_on_empty_queue(self, job_queue):
        assert job_queue.reserve(timeout=1) is None

    def test_unacked_messages_are_redelivered_after_recover(self, job_queue):
        job = Job.new("a")
        job_queue.publish(job)
        job_queue.reserve(timeout=1)   # worker dies before ack

        assert job_queue.recover_inflight() == 1
        redelivered = job_queue.reserve(timeout=1)
        assert Job.from_json(redelivered.body).id == job.id

    def test_inflight_list_is_per_worker(self, job_queue):
        assert job_queue.inflight == "jobs:processing:test-worker"


class TestLocalObjectStore:
    def test_put_and_get(self, tmp_path):
        store = LocalObjectStore(tmp_path)
        ref = store.put_bytes("processed/j/a.jpg", b"data", "image/jpeg")
        assert ref.startswith("local://")
        assert store.get_bytes("processed/j/a.jpg") == b"data"

    def test_missing_key(self, tmp_path):
        with pytest.raises(ObjectNotFound):
            LocalObjectStore(tmp_path).get_bytes("nope.png")

    def test_ping_creates_the_root(self, tmp_path):
        root = tmp_path / "objects"
        LocalObjectStore(root).ping()
        assert root.is_dir()

    def test_key_cannot_escape_root(self, tmp_path):
        with pytest.raises(ValueError):
            LocalObjectStore(tmp_path / "root").put_bytes("../outside", b"x", "image/png")


class _Body:
    def __init__(self, data):
        self.data = data

    def read(self):
        return self.data


class StubS3Client:
    def __init__(self):
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[(Bucket, Key)] = (Body, ContentType)

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": _Body(self.objects[(Bucket, Key)][0])}


class TestS3ObjectStore:
    def test_put_and_get(self):
        client = StubS3Client()
        store = S3ObjectStore("images", client=client)

        ref = store.put_bytes("processed/j/a.webp", b"img", "image/webp")

        assert ref == "s3://images/processed/j/a.webp"
        assert client.objects[("images", "processed/j/a.webp")] == (b"img", "image/webp")
        assert store.get_bytes("processed/j/a.webp") == b"img"

    def test_missing_key(self):
        with pytest.raises(ObjectNotFound):
            S3ObjectStore("images", client=StubS3Client()).get_bytes("missing")


def test_unknown_backend():
    with pytest.raises(RuntimeError):
        get_object_store("ftp")


class TestBootstrap:
    def test_retries_until_check_succeeds(self):
        attempts = []
        sleeps = []

        def check():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("not yet")

        wait_for("Redis", check, max_attempts=5, delay=0.5, sleep=sleeps.append)

        assert len(attempts) == 3
        assert sleeps == [0.5, 0.5]

    def test_gives_up_after_max_attempts(self):
        def check():
            raise ConnectionError("refused")

        with pytest.raises(BootstrapError, match="after 3 attempts"):
            wait_for("object store", check, max_attempts=3, delay=0, sleep=lambda _: None)


def test_build_worker_waits_on_redis_and_object_store(monkeypatch):
    client = FakeRedis()
    store = InMemoryObjectStore()
    checked = []

    monkeypatch.setattr(worker_module.config, "STORAGE_BACKEND", "local")
    monkeypatch.setattr(worker_module, "get_redis_client", lambda: client)
    monkeypatch.setattr(worker_module, "get_object_store", lambda: store)
    monkeypatch.setattr(worker_module, "wait_for", lambda name, check: checked.append((name, check)))

    built = worker_module.build_worker()

    assert [name for name, _ in checked] == ["Redis", "object store (local)"]
    redis_check, store_check = (check for _, check in checked)
    assert redis_check == built.status_store.ping
    assert store_check == store.ping
    assert built.queue.client is client
