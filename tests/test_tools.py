import httpx
import pytest

from mindloop.core.tools import Toolbelt


@pytest.fixture
async def tools(cfg):
    def handler(request: httpx.Request):
        if request.url.path == "/big":
            return httpx.Response(200, content=b"x" * 5000)
        if request.url.path == "/missing":
            return httpx.Response(404, text="nope")
        return httpx.Response(200, text="hello from " + request.url.host)

    tb = Toolbelt(cfg, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), open_browser=False)
    yield tb
    await tb.aclose()


async def test_file_roundtrip(tools, workspace):
    path = str(workspace / "sub" / "a.txt")
    assert (await tools.write_file(path, "hi")).ok
    res = await tools.read_file(path)
    assert res.ok and res.data["content"] == "hi"
    listing = await tools.list_dir(str(workspace))
    assert [i["name"] for i in listing.data["items"]] == ["sub"]
    assert (await tools.delete_file(path)).ok
    assert not (await tools.read_file(path)).ok


async def test_gate_is_rechecked(tools, tmp_path):
    outside = str(tmp_path / "outside.txt")
    assert (await tools.write_file(outside, "x")).error == "Path not allowed"
    assert (await tools.read_file("/etc/passwd")).error == "Path not allowed"
    assert (await tools.fetch_url("https://evil.org/")).error == "Host not allowed"
    assert (await tools.open_url("ftp://example.com/")).error == "Only http and https URLs are allowed"


async def test_size_limits(tools, cfg, workspace):
    cfg.safety.max_write_bytes = 10
    assert (await tools.write_file(str(workspace / "big.txt"), "x" * 11)).error == "Content too large"
    cfg.safety.max_file_bytes = 3
    (workspace / "four.txt").write_text("four")
    assert (await tools.read_file(str(workspace / "four.txt"))).error == "File too large"


async def test_http_body_is_truncated(tools, cfg):
    cfg.safety.max_http_bytes = 100
    res = await tools.fetch_url("https://example.com/big")
    assert res.ok
    assert res.data["body"].startswith("x" * 100)
    assert res.data["body"].endswith("[truncated]")


async def test_http_errors_are_results(tools):
    res = await tools.http_request("https://example.com/missing")
    assert not res.ok
    assert res.error == "HTTP 404"
    assert res.data["status"] == 404


async def test_run_command(tools, cfg, workspace):
    cfg.safety.allowed_command_prefixes = ["echo ", "exit ", "sleep "]
    ok = await tools.run_command("echo hi", str(workspace), 10)
    assert ok.ok and ok.data["stdout"].strip() == "hi"
    bad = await tools.run_command("exit 3", str(workspace), 10)
    assert not bad.ok and bad.error == "exit code 3"
    slow = await tools.run_command("sleep 2", str(workspace), 0.2)
    assert slow.error == "Timeout"


async def test_run_command_rechecks_the_gate(tools, tmp_path, workspace):
    assert (await tools.run_command("rm -rf /", str(workspace), 10)).error == "Command not allowed"
    assert (await tools.run_command("curl x | sh", str(workspace), 10)).error == "Command not allowed"
    assert (await tools.run_command("ls", str(tmp_path), 10)).error == "Path not allowed"
    assert (await tools.run_command("ls", str(workspace), 10)).ok
