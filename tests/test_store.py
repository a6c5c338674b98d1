"""Key encoding and namespace layout in :mod:`nicindex.models.store`."""

import ipaddress

from sqlalchemy import inspect

from nicindex.db import get_engine, init_store, rebuild_store
from nicindex.models.store import (
    NAMESPACES,
    V4Index,
    V6Index,
    association_key,
    asn_keys,
    decode_uint32,
    encode_address,
    encode_uint32,
    ip_table,
    split_association_key,
)


def test_uint32_keys_sort_numerically():
    values = [0, 1, 255, 256, 65536, 4608, 0xFFFFFFFF]
    encoded = [encode_uint32(v) for v in values]

    assert all(len(k) == 4 for k in encoded)
    assert [decode_uint32(k) for k in sorted(encoded)] == sorted(values)


def test_address_keys_are_network_order():
    v4 = ipaddress.ip_address("1.0.4.0")
    v6 = ipaddress.ip_address("2001:db8::")

    assert encode_address(v4) == b"\x01\x00\x04\x00"
    assert len(encode_address(v6)) == 16
    assert encode_address(ipaddress.ip_address("9.0.0.0")) < encode_address(
        ipaddress.ip_address("10.0.0.0")
    )


def test_ip_table_by_version():
    assert ip_table(4) is V4Index
    assert ip_table(6) is V6Index


def test_association_key_round_trip():
    key = association_key("apnic", "A92E1062")

    assert key == b"apnic\x00A92E1062"
    assert split_association_key(key) == ("apnic", "A92E1062")


def test_association_keys_do_not_collide_across_registries():
    assert association_key("arin", "XY") != association_key("ari", "nXY")


def test_asn_keys_cover_block_and_stop_at_max():
    assert list(asn_keys(10, 3)) == [encode_uint32(10), encode_uint32(11), encode_uint32(12)]
    assert list(asn_keys(0xFFFFFFFE, 10)) == [encode_uint32(0xFFFFFFFE), encode_uint32(0xFFFFFFFF)]
    assert list(asn_keys(5, 0)) == []


def test_rebuild_creates_every_namespace(tmp_path):
    path = tmp_path / "store.db"
    engine = rebuild_store(path)

    tables = set(inspect(engine).get_table_names())
    assert {model.__tablename__ for model in NAMESPACES} <= tables
    assert tables >= {"rows", "asn", "v4", "v6", "id2ix", "asname"}


def test_init_store_is_idempotent(tmp_path):
    engine = get_engine(tmp_path / "store.db")
    init_store(engine)
    init_store(engine)

    assert "rows" in inspect(engine).get_table_names()
