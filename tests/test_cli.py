"""Tests for postlite.cli.

Tests cover:
- Send subcommand arguments and body options
- History subcommand arguments
- Building a RequestSpec from arguments
- Printing buffered and streamed responses
- History mode end to end
"""

import argparse
import asyncio
import io
import json
from pathlib import Path

import pytest

from postlite.auth_injector import StaticCredentialSource
from postlite.cli import (
    HistoryArgs,
    SendArgs,
    build_spec,
    main,
    parse_args,
    parse_header,
    parse_key_value,
    render_preview,
    send_and_print,
)
from postlite.history_store import HistoryStore
from postlite.models import AppSettings, BodyType, PartKind, active_pairs
from postlite.transport import TransportError
from tests.conftest import ScriptedResponse, ScriptedTransport, make_request_spec


# =============================================================================
# Argument Type Tests
# =============================================================================


class TestArgumentTypes:
    def test_key_value(self):
        assert parse_key_value("a=b=c") == ("a", "b=c")
        assert parse_key_value("a=") == ("a", "")

    @pytest.mark.parametrize("value", ["novalue", "=x"])
    def test_key_value_invalid(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_key_value(value)

    def test_header(self):
        assert parse_header("X-Token:  abc ") == ("X-Token", "abc")
        assert parse_header("Accept: a:b") == ("Accept", "a:b")

    def test_header_invalid(self):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_header("no colon")


# =============================================================================
# Send Subcommand Tests
# =============================================================================


class TestSendArgs:
    def test_minimal(self):
        """Only a URL is required."""
        args = parse_args(["send", "https://x.test/"])
        assert isinstance(args, SendArgs)
        assert args.url == "https://x.test/"
        assert args.method is None
        assert args.stream is False
        assert args.history is not None

    def test_all_options(self):
        """Repeatable options accumulate in order."""
        args = parse_args(
            [
                "-v",
                "send",
                "https://x.test/",
                "-X",
                "patch",
                "-H",
                "A: 1",
                "-H",
                "B: 2",
                "-q",
                "q=1",
                "--json",
                '{"a":1}',
                "--stream",
                "--cookie",
                "CAS_SSO_COOKIE=tok",
                "--config",
                "settings.yaml",
                "--no-history",
                "--show-raw",
            ]
        )
        assert args.verbose is True
        assert args.method == "PATCH"
        assert args.headers == [("A", "1"), ("B", "2")]
        assert args.params == [("q", "1")]
        assert args.json_body == '{"a":1}'
        assert args.stream is True
        assert args.cookies == [("CAS_SSO_COOKIE", "tok")]
        assert args.config == Path("settings.yaml")
        assert args.history is None
        assert args.show_raw is True

    def test_body_options_are_exclusive(self):
        """Only one body option may be given."""
        with pytest.raises(SystemExit) as exc_info:
            parse_args(["send", "https://x.test/", "--json", "{}", "--text", "x"])
        assert exc_info.value.code == 2

    def test_unknown_method(self):
        with pytest.raises(SystemExit):
            parse_args(["send", "https://x.test/", "-X", "BREW"])

    def test_missing_url(self):
        with pytest.raises(SystemExit):
            parse_args(["send"])


class TestHistoryArgs:
    def test_show(self):
        args = parse_args(["history", "show", "abc", "--history", "h.json"])
        assert isinstance(args, HistoryArgs)
        assert args.action == "show"
        assert args.item_id == "abc"
        assert args.history == Path("h.json")

    def test_invalid_action(self):
        with pytest.raises(SystemExit):
            parse_args(["history", "rewind"])


class TestParserGeneral:
    def test_no_command(self):
        with pytest.raises(SystemExit):
            parse_args([])


# =============================================================================
# build_spec Tests
# =============================================================================


class TestBuildSpec:
    def test_get_by_default(self):
        spec = build_spec(parse_args(["send", "https://x.test/", "-q", "a=1"]))
        assert spec.method == "GET"
        assert spec.body_type is BodyType.NONE
        assert active_pairs(spec.params) == [("a", "1")]

    def test_body_implies_post(self):
        spec = build_spec(parse_args(["send", "https://x.test/", "--text", "hi"]))
        assert spec.method == "POST"
        assert spec.body_type is BodyType.TEXT
        assert spec.body_content == "hi"

    def test_explicit_method_kept(self):
        spec = build_spec(parse_args(["send", "https://x.test/", "-X", "PUT", "--json", "{}"]))
        assert spec.method == "PUT"
        assert spec.body_type is BodyType.JSON

    def test_form_with_file(self, tmp_path):
        upload = tmp_path / "a.txt"
        upload.write_bytes(b"content")
        spec = build_spec(
            parse_args(["send", "https://x.test/", "--form", "name=v", "--form", f"doc=@{upload}"])
        )
        assert spec.body_type is BodyType.FORM_DATA
        assert spec.form_data[0].value == "v"
        assert spec.form_data[1].kind is PartKind.FILE
        assert spec.form_data[1].file.name == "a.txt"
        assert spec.form_data[1].file.content == b"content"

    def test_raw_file(self, tmp_path):
        upload = tmp_path / "img.bin"
        upload.write_bytes(b"\x00\x01")
        spec = build_spec(parse_args(["send", "https://x.test/", "--file", str(upload)]))
        assert spec.body_type is BodyType.FILE
        assert spec.file.content == b"\x00\x01"

    def test_raw_file_media_type_from_name(self, tmp_path):
        upload = tmp_path / "data.json"
        upload.write_bytes(b"{}")
        spec = build_spec(parse_args(["send", "https://x.test/", "--file", str(upload)]))
        assert spec.file.content_type == "application/json"

    def test_urlencoded(self):
        spec = build_spec(parse_args(["send", "https://x.test/", "--urlencoded", "a=1"]))
        assert spec.body_type is BodyType.URLENCODED
        assert active_pairs(spec.form_urlencoded) == [("a", "1")]

    def test_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            build_spec(parse_args(["send", "https://x.test/", "--file", str(tmp_path / "nope")]))


class TestRenderPreview:
    def test_no_signed_headers_without_auth(self):
        preview = render_preview(make_request_spec(), AppSettings(), StaticCredentialSource())
        assert "x-sign" not in preview

    def test_signed_headers_listed_when_auth_active(self):
        settings = AppSettings.model_validate(
            {"auth": {"enabled": True, "app_id": "app-123", "secret_key": "s3cret"}}
        )
        source = StaticCredentialSource({"CAS_SSO_COOKIE": "session-token"})
        preview = render_preview(make_request_spec(url="https://x.test/a"), settings, source)
        assert "x-appid: app-123" in preview
        assert "x-auth-type: 1" in preview
        assert "x-auth-value: session-token" in preview
        assert "x-request-ts: " in preview
        assert "x-nonce: " in preview
        assert "x-sign: " in preview
        assert "s3cret" not in preview


# =============================================================================
# Output Tests
# =============================================================================


class TestSendAndPrint:
    def test_buffered_output(self, capsys):
        out = io.StringIO()
        transport = ScriptedTransport(
            ScriptedResponse(headers={"Content-Type": "application/json"}, chunks=[b'{"a":1}'])
        )
        code = asyncio.run(
            send_and_print(make_request_spec(), AppSettings(), StaticCredentialSource(), None, out, transport)
        )
        assert code == 0
        assert out.getvalue() == 'HTTP/1.1 200 OK\ncontent-type: application/json\n\n{\n  "a": 1\n}\n'
        assert "[200 OK]" in capsys.readouterr().err

    def test_streamed_output(self):
        out = io.StringIO()
        transport = ScriptedTransport(ScriptedResponse(chunks=[b"one ", b"two"]))
        code = asyncio.run(
            send_and_print(
                make_request_spec(stream=True), AppSettings(), StaticCredentialSource(), None, out, transport
            )
        )
        assert code == 0
        assert out.getvalue() == "HTTP/1.1 200 OK\n\none two\n"

    def test_streamed_failure_prints_error_in_full(self):
        out = io.StringIO()
        response = ScriptedResponse()
        response.feed(b"partial-data-here")
        response.fail(TransportError("boom"))
        code = asyncio.run(
            send_and_print(
                make_request_spec(stream=True),
                AppSettings(),
                StaticCredentialSource(),
                None,
                out,
                ScriptedTransport(response),
            )
        )
        assert code == 1
        assert out.getvalue() == (
            "HTTP/1.1 200 OK\n\npartial-data-here\nboom\n\nRequest Failed or Aborted.\n"
        )

    def test_failure_exit_code(self, capsys):
        out = io.StringIO()
        transport = ScriptedTransport(TransportError("connection error: refused"))
        code = asyncio.run(
            send_and_print(make_request_spec(), AppSettings(), StaticCredentialSource(), None, out, transport)
        )
        assert code == 1
        assert "Request Failed or Aborted." in out.getvalue()

    def test_records_history(self):
        history = HistoryStore()
        transport = ScriptedTransport(ScriptedResponse(chunks=[b"ok"]))
        asyncio.run(
            send_and_print(
                make_request_spec(url="https://x.test/h"),
                AppSettings(),
                StaticCredentialSource(),
                history,
                io.StringIO(),
                transport,
            )
        )
        assert [item.url for item in history.items] == ["https://x.test/h"]


# =============================================================================
# History Mode Tests
# =============================================================================


class TestHistoryMode:
    def test_list_empty(self, tmp_path, capsys):
        assert main(["history", "list", "--history", str(tmp_path / "h.json")]) == 0
        assert "No history" in capsys.readouterr().out

    def test_list_show_clear(self, tmp_path, capsys):
        path = tmp_path / "h.json"
        store = HistoryStore(path)
        item = store.add(make_request_spec(method="POST", url="https://x.test/saved"))
        store.toggle_pin(item.id)

        assert main(["history", "list", "--history", str(path)]) == 0
        listed = capsys.readouterr().out
        assert item.id in listed
        assert listed.startswith("*")

        assert main(["history", "show", item.id, "--history", str(path)]) == 0
        shown = json.loads(capsys.readouterr().out)
        assert shown["url"] == "https://x.test/saved"
        assert shown["method"] == "POST"

        assert main(["history", "clear", "--history", str(path)]) == 0
        assert not path.exists()

    def test_show_unknown(self, tmp_path, capsys):
        assert main(["history", "show", "missing", "--history", str(tmp_path / "h.json")]) == 1
        assert "not found" in capsys.readouterr().err


class TestSendMode:
    def test_bad_config_exit_code(self, tmp_path, capsys):
        config = tmp_path / "settings.yaml"
        config.write_text("fetch_mode: teleport\n")
        code = main(["send", "https://x.test/", "--config", str(config), "--no-history"])
        assert code == 1
        assert "Error loading config" in capsys.readouterr().err
