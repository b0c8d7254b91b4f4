"""Tests for turning local files into attachments."""

import base64

import pytest

from chatdeck.attachments import (
    DEFAULT_MIME_TYPE,
    attachment_from_bytes,
    attachment_from_path,
)


def test_bytes_are_base64_encoded():
    attachment = attachment_from_bytes("notes.txt", b"hello")
    assert attachment.mime_type == "text/plain"
    assert attachment.encoded_payload == base64.b64encode(b"hello").decode()
    assert attachment.preview_reference == "data:text/plain;base64,aGVsbG8="


def test_explicit_mime_type_wins():
    attachment = attachment_from_bytes("blob", b"\x00", mime_type="image/png")
    assert attachment.mime_type == "image/png"


def test_unknown_extension_falls_back():
    attachment = attachment_from_bytes("data.zzunknown", b"\x00\x01")
    assert attachment.mime_type == DEFAULT_MIME_TYPE


def test_attachment_from_path(tmp_path):
    path = tmp_path / "cat.png"
    path.write_bytes(b"\x89PNG")

    attachment = attachment_from_path(path)

    assert attachment.name == "cat.png"
    assert attachment.mime_type == "image/png"
    assert base64.b64decode(attachment.encoded_payload) == b"\x89PNG"


def test_missing_file_raises(tmp_path):
    with pytest.raises(OSError):
        attachment_from_path(tmp_path / "missing.pdf")
