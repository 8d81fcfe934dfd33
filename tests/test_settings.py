import os
import sys
import pytest
import yaml

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import SettingsRepository
from settings_schema import SettingsSchema, validate_settings


def test_schema_defaults():
    schema = SettingsSchema()
    assert schema.weight_unit == "kg"
    assert schema.max_weight_cache_version == 2
    assert schema.log_level == "INFO"


@pytest.mark.parametrize(
    "data",
    [
        {"weight_unit": "stone"},
        {"max_weight_cache_version": 0},
        {"idle_delay_ms": -1},
        {"log_level": "LOUD"},
    ],
)
def test_invalid_settings_raise_value_error(data):
    with pytest.raises(ValueError):
        validate_settings(data)


def test_repository_syncs_yaml(tmp_path):
    db_file = str(tmp_path / "settings.db")
    yaml_file = str(tmp_path / "settings.yaml")
    repo = SettingsRepository(db_file, yaml_file)
    assert repo.get_text("weight_unit", "") == "kg"
    assert repo.get_int("max_weight_cache_version", 0) == 2

    repo.set_text("weight_unit", "lb")
    with open(yaml_file, encoding="utf-8") as f:
        assert yaml.safe_load(f)["weight_unit"] == "lb"

    with open(yaml_file, "w", encoding="utf-8") as f:
        yaml.safe_dump({"weight_unit": "kg", "idle_delay_ms": 500}, f)
    assert repo.get_text("weight_unit", "") == "kg"
    assert repo.all_settings()["idle_delay_ms"] == 500

    with pytest.raises(ValueError):
        repo.set_text("weight_unit", "stone")
