import base64
import json
import zlib

import pytest

from codec import (
    compress_config,
    decode_config_payload,
    decode_forest,
    decode_server,
    decompress_config,
    encode_forest,
    encode_server,
)
from hierarchy import build_tree
from models import CHILD, STANDALONE, Config, FormatError, Server


def _payload_for(raw: bytes) -> str:
    return base64.urlsafe_b64encode(zlib.compress(raw, 9)).decode("ascii").rstrip("=")


def test_encode_server_uses_zero_for_empty_fields() -> None:
    node = Server(
        ip="hub.example.com",
        tag="EU",
        tag_color="00FF00",
        children=[Server(ip="s1.example.com", comment="lobby", ignore_in_list=True)],
    )
    assert encode_server(node) == [
        "hub.example.com",
        0,
        "EU",
        "00FF00",
        0,
        [["s1.example.com", "lobby", 0, "FF9800", 1, 0]],
    ]


def test_decode_server_applies_defaults() -> None:
    server = decode_server(["play.example.com", 0, 0, 0, 1, 0])
    assert server.ip == "play.example.com"
    assert server.comment == ""
    assert server.tag == ""
    assert server.tag_color == "FF9800"
    assert server.tag_color_with_hash == "#FF9800"
    assert server.ignore_in_list is True
    assert server.children == []
    assert server.parent_ip == ""
    assert server.server_type == STANDALONE


def test_decode_server_accepts_missing_children_slot() -> None:
    assert decode_server(["a", 0, 0, 0, 0]).children == []


def test_forest_round_trip_keeps_fields_and_shape() -> None:
    forest = build_tree([
        Server(ip="hub", comment="main", tag="EU", tag_color="123ABC"),
        Server(ip="s1", parent_ip="hub", tag="S1", ignore_in_list=True),
        Server(ip="solo", comment="0"),
    ])
    decoded = decode_forest(encode_forest(forest))
    assert [node.ip for node in decoded] == ["hub", "solo"]
    hub, solo = decoded
    assert (hub.comment, hub.tag, hub.tag_color, hub.ignore_in_list) == ("main", "EU", "123ABC", False)
    assert [child.ip for child in hub.children] == ["s1"]
    assert hub.children[0].ignore_in_list is True
    # Placeholders only; flattening restores linkage.
    assert hub.children[0].parent_ip == ""
    assert hub.children[0].server_type != CHILD
    assert solo.comment == "0"


@pytest.mark.parametrize("raw", [
    "not a list",
    ["only", 0, 0],
    [42, 0, 0, 0, 0, 0],
    ["  ", 0, 0, 0, 0, 0],
    ["a", 5, 0, 0, 0, 0],
    ["a", 0, 0, 0, 2, 0],
    ["a", 0, 0, 0, 0, "kids"],
    ["a", 0, 0, 0, 0, [["b"]]],
])
def test_decode_server_rejects_bad_shapes(raw) -> None:
    with pytest.raises(FormatError):
        decode_server(raw)


def test_compress_round_trip() -> None:
    config = Config(
        footer="Powered by example",
        show_offline_by_default=True,
        servers=[
            Server(ip="hub.example.com", priority=10),
            Server(ip="s1.example.com", parent_ip="hub.example.com", priority=20),
        ],
    )
    payload = compress_config(config)
    assert "+" not in payload and "/" not in payload and "=" not in payload
    decoded = decompress_config(payload)
    assert decoded is not None
    assert decoded.footer == "Powered by example"
    assert decoded.show_offline_by_default is True
    assert [node.ip for node in decoded.servers] == ["hub.example.com"]
    assert [child.ip for child in decoded.servers[0].children] == ["s1.example.com"]


def test_compress_empty_config() -> None:
    decoded = decompress_config(compress_config(Config()))
    assert decoded is not None
    assert decoded.footer == ""
    assert decoded.show_offline_by_default is False
    assert decoded.servers == []


def test_compress_writes_expected_envelope() -> None:
    payload = compress_config(Config(servers=[Server(ip="a")]))
    padded = payload + "=" * (-len(payload) % 4)
    packed = json.loads(zlib.decompress(base64.urlsafe_b64decode(padded)))
    assert packed == [0, 0, [["a", 0, 0, "FF9800", 0, 0]]]


def test_decode_accepts_whitespace_and_missing_padding() -> None:
    payload = _payload_for(b'["f",1,[["a",0,0,0,0,0]]]')
    config = decode_config_payload("  " + payload[:10] + "\n" + payload[10:])
    assert config.footer == "f"
    assert config.servers[0].ip == "a"


@pytest.mark.parametrize("payload", [
    "",
    "***not base64***",
    "abcd",
    _payload_for(b"{not json"),
    _payload_for(b'{"servers": []}'),
    _payload_for(b'["footer", 1]'),
    _payload_for(b'[0, 7, []]'),
    _payload_for(b'[0, 0, [["a"]]]'),
])
def test_decompress_fails_closed(payload) -> None:
    assert decompress_config(payload) is None
    with pytest.raises(FormatError):
        decode_config_payload(payload)


def test_decompress_rejects_non_text() -> None:
    assert decompress_config(None) is None


def _nested_payload(depth: int) -> str:
    node = '["leaf",0,0,0,0,0]'
    for level in range(depth):
        node = f'["n{level}",0,0,0,0,[{node}]]'
    return _payload_for(f"[0,0,[{node}]]".encode("ascii"))


@pytest.mark.parametrize("depth", [40, 5000])
def test_deeply_nested_payload_is_a_format_error(depth) -> None:
    payload = _nested_payload(depth)
    assert decompress_config(payload) is None
    with pytest.raises(FormatError):
        decode_config_payload(payload)


def test_decode_server_normalizes_tag_color() -> None:
    assert decode_server(["a", 0, 0, "zzz", 0, 0]).tag_color == "FF9800"
    assert decode_server(["a", 0, 0, "00ff00", 0, 0]).tag_color == "00FF00"
    assert decode_server(["a", 0, 0, "#abc", 0, 0]).tag_color == "AABBCC"
