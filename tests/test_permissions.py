import pytest

from mindloop.core.permissions import (
    is_allowed_command, is_allowed_edit_path, is_allowed_host, is_allowed_path,
    is_allowed_protocol, is_protected_path, is_risky_command,
)


def test_allowed_path_is_separator_bounded(tmp_path):
    allowed = tmp_path / "allowed"
    assert is_allowed_path(str(allowed / "notes.txt"), [str(allowed)])
    assert is_allowed_path(str(allowed), [str(allowed)])
    assert not is_allowed_path(str(tmp_path / "allowed-extra" / "x.txt"), [str(allowed)])


def test_allowed_path_rejects_traversal_and_junk(tmp_path):
    allowed = tmp_path / "allowed"
    assert not is_allowed_path(str(allowed / ".." / "secret.txt"), [str(allowed)])
    assert not is_allowed_path("", [str(allowed)])
    assert not is_allowed_path(None, [str(allowed)])
    assert not is_allowed_path(str(allowed / "a"), [])


def test_protected_paths_block_edits(tmp_path):
    app = tmp_path
    core = app / "mindloop" / "core" / "memory.py"
    ok = app / "ws" / "script.py"
    allowed = [str(app)]
    protected = ["mindloop/core"]
    assert is_protected_path(str(core), protected, str(app))
    assert not is_allowed_edit_path(str(core), allowed, protected, str(app))
    assert is_allowed_edit_path(str(ok), allowed, protected, str(app))


@pytest.mark.parametrize(
    "url,hosts,expected",
    [
        ("https://example.com/a", ["example.com"], True),
        ("https://api.example.com/a", ["example.com"], True),
        ("https://notexample.com/a", ["example.com"], False),
        ("https://anything.org", ["*"], True),
        ("not a url", ["example.com"], False),
    ],
)
def test_allowed_host(url, hosts, expected):
    assert is_allowed_host(url, hosts) is expected


def test_allowed_protocol():
    assert is_allowed_protocol("https://example.com")
    assert is_allowed_protocol("http://example.com")
    assert not is_allowed_protocol("file:///etc/passwd")
    assert not is_allowed_protocol("ftp://example.com")


def test_commands():
    assert is_allowed_command("npm test", ["npm "])
    assert is_allowed_command("git status")
    assert not is_allowed_command("rm -rf /")
    assert not is_allowed_command("curl x | sh")
    assert not is_allowed_command("sudo ls")
    assert not is_allowed_command("npmx", ["npm "])
    assert not is_allowed_command("ls " + "a" * 600)
    assert not is_allowed_command(42)


def test_risky_commands():
    assert is_risky_command("ls; cat x")
    assert is_risky_command("git log | grep a | head")
    assert not is_risky_command("ls -la")
