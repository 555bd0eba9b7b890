from datetime import datetime, timezone

import pytest

from rolereactor.datatypes.discord_datatypes import now_utc, snowflake_created_at, snowflake_str


class DummyObj:
    def __init__(self, id_val=None):
        self.id = id_val


def test_snowflake_str_from_int_str_and_model():
    assert snowflake_str(123456789012345678) == "123456789012345678"
    assert snowflake_str("  987  ") == "987"
    assert snowflake_str(DummyObj(id_val=111)) == "111"


def test_snowflake_str_invalid():
    with pytest.raises(ValueError):
        snowflake_str(True)
    with pytest.raises(ValueError):
        snowflake_str(DummyObj())  # type: ignore # no id
    with pytest.raises(ValueError):
        snowflake_str([])  # type: ignore # unsupported type


def test_snowflake_created_at_decodes_discord_epoch():
    # 175928847299117063 is the example id from the Discord API reference
    created = snowflake_created_at(175928847299117063)
    expected = datetime(2016, 4, 30, 11, 18, 25, 796000, tzinfo=timezone.utc)
    assert abs((created - expected).total_seconds()) < 0.001


def test_snowflake_created_at_non_numeric_is_none():
    assert snowflake_created_at("G1") is None


def test_now_utc_is_timezone_aware():
    assert now_utc().tzinfo is not None
