"""
Transform Proxy test fixtures

- fake_tool: a small Python script standing in for the image tool; it
  records its arguments and writes `transformed:` + source bytes
- upstream: an httpx MockTransport that serves canned images and counts
  requests
- service / client: a fully wired proxy on a temporary cache directory
"""

import asyncio
import json
import sys
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

# Make the backend directory importable
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from transform_proxy.catalog import CatalogHolder, TransformCatalog
from transform_proxy.config import ProxyConfig
from transform_proxy.main import create_app
from transform_proxy.service import TransformProxyService


FAKE_TOOL_SOURCE = '''
import json
import os
import sys
from pathlib import Path

args = sys.argv[1:]
with open(Path(__file__).with_suffix(".log"), "a") as log:
    log.write(json.dumps({"args": args, "omp": os.environ.get("OMP_NUM_THREADS")}) + "\\n")

if "--fail" in args:
    sys.stderr.write("fake tool failure\\n")
    sys.exit(3)

source, output = args[-2], args[-1]
with open(source, "rb") as src, open(output, "wb") as dst:
    dst.write(b"transformed:" + src.read())
'''


# ============================================
# Fake transform tool
# ============================================

class FakeTool:
    def __init__(self, script: Path):
        self.script = script
        self.log = script.with_suffix(".log")

    @property
    def command(self):
        return (sys.executable, str(self.script))

    def calls(self):
        if not self.log.exists():
            return []
        return [json.loads(line) for line in self.log.read_text().splitlines() if line]


@pytest.fixture
def fake_tool(tmp_path):
    script = tmp_path / "fake_convert.py"
    script.write_text(FAKE_TOOL_SOURCE)
    return FakeTool(script)


# ============================================
# Fake upstream
# ============================================

class FakeUpstream:
    def __init__(self):
        self.images = {}
        self.calls = []
        self.delay = 0.0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(str(request.url))
        if self.delay:
            await asyncio.sleep(self.delay)
        body = self.images.get(str(request.url))
        if body is None:
            return httpx.Response(404, content=b"not here")
        return httpx.Response(200, content=body, headers={"content-type": "image/jpeg"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def upstream():
    fake = FakeUpstream()
    fake.images["https://example.com/a.jpg"] = b"JPEG-A"
    return fake


# ============================================
# Wired service
# ============================================

@pytest.fixture
def catalog():
    return CatalogHolder(catalog=TransformCatalog({
        "thumb": ["-resize {{width}}x{{height}}"],
        "broken": ["--fail"],
    }))


@pytest.fixture
def config(tmp_path, fake_tool):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    return ProxyConfig(
        cache_dir=str(tmp_path / "cache"),
        cache_max_bytes=1024 * 1024,
        transform_command=fake_tool.command,
        scratch_dir=str(scratch),
        fill_timeout=5.0,
        fill_poll_interval=0.01,
    )


@pytest.fixture
def service(config, catalog, upstream):
    return TransformProxyService(config, catalog=catalog, http_client=upstream.client())


@pytest.fixture
def client(service):
    with TestClient(create_app(service=service)) as test_client:
        yield test_client
