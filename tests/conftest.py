"""
Shared test doubles: an in-memory Redis, object store and HTTP session.
"""

from io import BytesIO

import pytest
import redis
import requests
from PIL import Image

from common.errors import ObjectNotFound
from common.job_queue import JobQueue
from common.status_store import StatusStore
from common.storage import ObjectStore
from worker.acquirer import SourceAcquirer
from worker.sink import ResultSink
from worker.transforms import TransformPipeline
from worker.worker import Worker


def make_image_bytes(size=(400, 200), fmt="PNG", color="red", mode="RGB") -> bytes:
    buf = BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


class FakeRedis:
    """Implements just the commands StatusStore and JobQueue use."""

    def __init__(self):
        self.values = {}
        self.lists = {}
        self.writes = []       # every SET as (key, value, ex)
        self.fail_writes = False

    def _as_bytes(self, value):
        return value.encode() if isinstance(value, str) else value

    def ping(self):
        return True

    def set(self, key, value, ex=None):
        if self.fail_writes:
            raise redis.ConnectionError("connection refused")
        value = self._as_bytes(value)
        self.writes.append((key, value, ex))
        self.values[key] = value
        return True

    def get(self, key):
        return self.values.get(key)

    def lpush(self, name, *values):
        lst = self.lists.setdefault(name, [])
        for value in values:
            lst.insert(0, self._as_bytes(value))
        return len(lst)

    def lmove(self, src, dst, wherefrom="LEFT", whereto="RIGHT"):
        lst = self.lists.get(src) or []
        if not lst:
            return None
        value = lst.pop(0) if wherefrom == "LEFT" else lst.pop()
        target = self.lists.setdefault(dst, [])
        if whereto == "LEFT":
            target.insert(0, value)
        else:
            target.append(value)
        return value

    def blmove(self, src, dst, timeout, wherefrom="LEFT", whereto="RIGHT"):
        return self.lmove(src, dst, wherefrom, whereto)

    def lrem(self, name, count, value):
        lst = self.lists.get(name) or []
        if value in lst:
            lst.remove(value)
            return 1
        return 0


class InMemoryObjectStore(ObjectStore):
    def __init__(self):
        self.objects = {}
        self.fail_puts = False

    def get_bytes(self, key):
        if key not in self.objects:
            raise ObjectNotFound(key)
        return self.objects[key][0]

    def put_bytes(self, key, data, content_type):
        if self.fail_puts:
            raise OSError("quota exceeded")
        self.objects[key] = (data, content_type)
        return f"mem://{key}"

    def ping(self):
        pass


class FakeResponse:
    def __init__(self, status_code=200, content=b""):
        self.status_code = status_code
        self.content = content


class FakeSession:
    """requests.Session stand-in serving canned responses by URL."""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        if url not in self.routes:
            raise requests.ConnectionError(f"cannot connect to {url}")
        return self.routes[url]


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def object_store():
    return InMemoryObjectStore()


@pytest.fixture
def http_session():
    return FakeSession()


@pytest.fixture
def status_store(fake_redis):
    return StatusStore(fake_redis, ttl_seconds=86400)


@pytest.fixture
def job_queue(fake_redis):
    return JobQueue(fake_redis, name="jobs", worker_id="test-worker")


@pytest.fixture
def worker(job_queue, status_store, object_store, http_session):
    return Worker(
        queue=job_queue,
        status_store=status_store,
        acquirer=SourceAcquirer(object_store, session=http_session, timeout=(1, 2)),
        pipeline=TransformPipeline(ResultSink(object_store)),
    )
