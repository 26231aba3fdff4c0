import pytest

from pagegate.taxonomy import Taxonomy, load_taxonomy, normalize_label


def test_builtin_default_taxonomy_loads(taxonomy):
    assert taxonomy.name == "default"
    assert "Passport" in taxonomy.type_names()
    assert taxonomy.find("passport").name == "Passport"
    assert taxonomy.find("PASSPORT").id == "passport"
    assert taxonomy.find("Recipe") is None


def test_thresholds_fall_back_to_default(taxonomy):
    assert taxonomy.threshold_for("Passport", 0.8) == pytest.approx(0.85)
    assert taxonomy.threshold_for("Bank Statement", 0.8) == pytest.approx(0.8)
    assert taxonomy.threshold_for("Unknown", 0.7) == pytest.approx(0.7)


def test_sub_type_elements_are_merged(taxonomy):
    base = [e.name for e in taxonomy.expected_elements("Driver's License")]
    commercial = [e.name for e in taxonomy.expected_elements("drivers_license", "Commercial")]
    assert "Endorsements" not in base
    assert commercial[: len(base)] == base
    assert commercial[-1] == "Endorsements"


def test_inactive_types_are_ignored():
    tx = Taxonomy.from_dict(
        {"document_types": [{"name": "Old Form", "is_active": False}, {"name": "New Form"}]}
    )
    assert tx.find("Old Form") is None
    assert tx.type_names() == ["New Form"]


def test_yaml_and_json_files(tmp_path, taxonomy):
    import orjson
    import yaml

    y = tmp_path / "custom.yaml"
    y.write_text(yaml.safe_dump(taxonomy.to_dict()))
    j = tmp_path / "custom.json"
    j.write_bytes(orjson.dumps(taxonomy.to_dict()))
    assert load_taxonomy(str(y)).type_names() == taxonomy.type_names()
    assert load_taxonomy(str(j)).find("Invoice").confidence_threshold == pytest.approx(0.75)


def test_missing_taxonomy_raises():
    with pytest.raises(FileNotFoundError):
        load_taxonomy("does-not-exist")


def test_normalize_label():
    assert normalize_label("  Date_of-Birth ") == "date of birth"
