"""Tests for form config parsing and the config registry."""

import json
import logging

import pytest

from fieldsurvey.core.exceptions import FormConfigError
from fieldsurvey.schemas.forms import ChoiceField, NumberField
from fieldsurvey.services.form_configs import FormConfigRegistry, parse_form_config


def minimal_form(**overrides) -> dict:
    form = {
        "id": "mini",
        "version": "1",
        "title": "Mini",
        "type": "family",
        "steps": [
            {
                "id": "s1",
                "title": "Step",
                "sections": [
                    {
                        "id": "sec",
                        "title": "Section",
                        "fields": [{"id": "members", "type": "number", "label": "Members", "min": 1}],
                    }
                ],
            }
        ],
    }
    form.update(overrides)
    return form


class TestParseFormConfig:
    def test_bundled_building_survey(self, building_config):
        assert building_config.id == "building-survey"
        assert building_config.total_steps == 4
        assert building_config.settings.auto_save is True
        assert building_config.settings.auto_save_interval == 30000

        fields = {f.id: f for _, _, _, f in building_config.iter_fields()}
        assert isinstance(fields["buildingType"], ChoiceField)
        assert isinstance(fields["totalFloors"], NumberField)
        assert (fields["totalFloors"].min, fields["totalFloors"].max) == (1, 32)
        assert fields["ward"].dependencies[0].field == "buildingType"

    def test_accepts_json_text(self):
        config = parse_form_config(json.dumps(minimal_form()))
        assert config.type == "family"

    def test_settings_defaults(self):
        config = parse_form_config(minimal_form())
        assert config.settings.save_as_draft is True
        assert config.settings.auto_save is False
        assert config.settings.require_location is False

    def test_unknown_field_type_is_skipped(self, caplog):
        form = minimal_form()
        form["steps"][0]["sections"][0]["fields"].append({"id": "sig", "type": "signature", "label": "Sign"})
        with caplog.at_level(logging.WARNING):
            config = parse_form_config(form)
        assert [f.id for _, _, _, f in config.iter_fields()] == ["members"]
        assert "signature" in caplog.text

    def test_duplicate_field_ids_rejected(self):
        form = minimal_form()
        fields = form["steps"][0]["sections"][0]["fields"]
        fields.append(dict(fields[0]))
        with pytest.raises(FormConfigError, match="Duplicate field id"):
            parse_form_config(form)

    def test_form_needs_a_step(self):
        with pytest.raises(FormConfigError):
            parse_form_config(minimal_form(steps=[]))

    def test_bad_operator_rejected(self):
        form = minimal_form()
        form["steps"][0]["sections"][0]["fields"][0]["dependencies"] = [
            {"field": "x", "operator": "startsWith", "value": "a"}
        ]
        with pytest.raises(FormConfigError):
            parse_form_config(form)

    def test_not_json(self):
        with pytest.raises(FormConfigError):
            parse_form_config("{not json")

    def test_config_is_immutable(self):
        config = parse_form_config(minimal_form())
        with pytest.raises(Exception):
            config.title = "Changed"


class TestFormConfigRegistry:
    def test_loads_bundled_forms(self, registry):
        assert "building-survey" in registry
        assert registry.get("building-survey").title == "Building Survey"

    def test_invalid_documents_are_skipped(self, tmp_path, caplog):
        (tmp_path / "good.json").write_text(json.dumps(minimal_form()))
        (tmp_path / "broken.json").write_text("{")
        (tmp_path / "notes.txt").write_text("ignored")
        configs = FormConfigRegistry(tmp_path)
        with caplog.at_level(logging.WARNING):
            assert configs.load() == 1
        assert len(configs) == 1
        assert "broken.json" in caplog.text

    def test_missing_directory(self, tmp_path):
        assert FormConfigRegistry(tmp_path / "nope").load() == 0

    def test_unknown_form(self, registry):
        with pytest.raises(FormConfigError, match="Unknown form"):
            registry.get("no-such-form")

    def test_register_replaces_by_id(self):
        configs = FormConfigRegistry()
        configs.register(parse_form_config(minimal_form(version="1")))
        configs.register(parse_form_config(minimal_form(version="2")))
        assert len(configs) == 1
        assert configs.get("mini").version == "2"
