"""Tests for the mapping engine."""

import copy

import pytest

from conduit.engine.mapping import MappingEngine, parse_expression, resolve_path, stringify
from conduit.engine.transforms import FieldTransformer
from conduit.exceptions import MappingError
from conduit.models.mapping import Mapping


@pytest.fixture
def engine():
    return MappingEngine()


@pytest.fixture
def person():
    return {
        "first": "Ada",
        "last": "Lovelace",
        "age": 36,
        "active": True,
        "score": None,
        "tags": ["math", "poetry"],
        "address": {"city": "London", "zip": "W1"},
    }


class TestInterpolation:
    def test_concatenates_tokens_and_literals(self, engine, person):
        result = engine.map({"fullName": "{{first}} {{last}}"}, person)
        assert result == {"fullName": "Ada Lovelace"}

    def test_whitespace_inside_braces_is_ignored(self, engine, person):
        assert engine.map({"name": "{{ first }}"}, person) == {"name": "Ada"}

    def test_missing_path_interpolates_as_empty_string(self, engine, person):
        result = engine.map({"name": "{{first}} {{middle}}", "middle": "{{middle}}"}, person)
        assert result == {"name": "Ada ", "middle": ""}

    def test_nested_paths_and_list_indexes(self, engine, person):
        result = engine.map({"city": "{{address.city}}", "firstTag": "{{tags.0}}", "noTag": "{{tags.5}}"}, person)
        assert result == {"city": "London", "firstTag": "math", "noTag": ""}

    def test_stringifies_values_inside_text(self, engine, person):
        result = engine.map({
            "flag": "active={{active}}",
            "score": "score={{score}}",
            "where": "at {{address}}",
        }, person)
        assert result == {
            "flag": "active=true",
            "score": "score=",
            "where": 'at {"city":"London","zip":"W1"}',
        }


class TestTypePreservation:
    def test_single_token_keeps_value_type(self, engine, person):
        result = engine.map({
            "age": "{{age}}",
            "active": "{{active}}",
            "tags": "{{tags}}",
            "address": "{{address}}",
            "score": "{{score}}",
        }, person)
        assert result["age"] == 36
        assert result["active"] is True
        assert result["tags"] == ["math", "poetry"]
        assert result["address"] == {"city": "London", "zip": "W1"}
        assert result["score"] is None

    def test_surrounding_text_makes_a_string(self, engine, person):
        assert engine.map({"age": "{{age}} years"}, person) == {"age": "36 years"}

    def test_literals_and_nested_rules(self, engine, person):
        result = engine.map({
            "source": "crm",
            "priority": 5,
            "contact": {"name": "{{first}}", "city": "{{address.city}}"},
            "labels": ["{{tags.1}}", "static"],
        }, person)
        assert result == {
            "source": "crm",
            "priority": 5,
            "contact": {"name": "Ada", "city": "London"},
            "labels": ["poetry", "static"],
        }

    def test_output_keys_follow_declaration_order(self, engine, person):
        result = engine.map({"z": "{{first}}", "a": "{{last}}", "m": "x"}, person)
        assert list(result) == ["z", "a", "m"]


class TestTransforms:
    def test_pipe_transforms(self, engine, person):
        result = engine.map({
            "age": "{{age | string}}",
            "upper": "{{first | uppercase}}",
            "months": "{{age | multiply_by_12 | int}}",
        }, person)
        assert result == {"age": "36", "upper": "ADA", "months": 432}

    def test_pass_through_unset_and_cast(self, engine, person):
        mapping = Mapping(
            mapping={"name": "{{first}} {{last}}"},
            pass_through=True,
            unset=["tags", "address", "score"],
            cast={"age": "string", "active": "string"},
        )
        result = engine.map(mapping, person)
        assert result == {
            "first": "Ada",
            "last": "Lovelace",
            "age": "36",
            "active": "True",
            "name": "Ada Lovelace",
        }


class TestPurity:
    def test_input_is_not_mutated(self, engine, person):
        original = copy.deepcopy(person)
        engine.map(Mapping(mapping={"tags": "{{tags}}"}, pass_through=True, unset=["first"]), person)
        assert person == original

    def test_output_does_not_share_state_with_input(self, engine, person):
        result = engine.map({"tags": "{{tags}}", "address": "{{address}}"}, person)
        result["tags"].append("chess")
        result["address"]["city"] = "Paris"
        assert person["tags"] == ["math", "poetry"]
        assert person["address"]["city"] == "London"

    def test_same_inputs_give_same_output(self, engine, person):
        rules = {"a": "{{first}}-{{age}}", "b": {"c": "{{tags}}"}}
        assert engine.map(rules, person) == engine.map(rules, person)


class TestErrors:
    @pytest.mark.parametrize("expression", [
        "{{first",
        "first}}",
        "{{first}} and {{last",
        "{{}}",
        "{{ | uppercase}}",
        "{{address..city}}",
        "{{first | explode}}",
    ])
    def test_malformed_expressions(self, engine, person, expression):
        with pytest.raises(MappingError):
            engine.map({"out": expression}, person)

    def test_non_object_input(self, engine):
        with pytest.raises(MappingError, match="must be an object"):
            engine.map({"out": "{{a}}"}, ["not", "an", "object"])

    def test_required_path_missing(self, engine, person):
        mapping = Mapping(mapping={"email": "{{email}}"}, required=["email"])
        with pytest.raises(MappingError, match="Required field 'email'"):
            engine.map(mapping, person)

    def test_unknown_cast(self, engine, person):
        with pytest.raises(MappingError, match="Unknown cast"):
            engine.map(Mapping(mapping={"age": "{{age}}"}, cast={"age": "explode"}), person)

    def test_oversized_number_keeps_its_value(self, engine):
        assert engine.map({"age": "{{age | int}}"}, {"age": "1e400"}) == {"age": "1e400"}

    def test_transform_crash_is_a_mapping_error(self, engine, person, monkeypatch):
        def crash(value, transform):
            raise RuntimeError("boom")

        monkeypatch.setattr(FieldTransformer, "apply_transform", staticmethod(crash))

        with pytest.raises(MappingError, match="Transform 'uppercase' failed: boom"):
            engine.map({"out": "{{first | uppercase}}"}, person)
        with pytest.raises(MappingError, match="boom"):
            engine.map(Mapping(mapping={"age": "{{age}}"}, cast={"age": "string"}), person)

    def test_validate_checks_nested_expressions(self, engine):
        engine.validate({"ok": "{{a}}", "nested": {"list": ["{{b | int}}"]}})
        with pytest.raises(MappingError):
            engine.validate({"ok": "{{a}}", "nested": {"list": ["{{b"]}})


class TestHelpers:
    def test_parse_expression_splits_parts(self):
        parsed = parse_expression("Hello {{ name | uppercase }}!")
        assert parsed.single_token is None
        assert parsed.parts[0] == "Hello "
        assert parsed.parts[1].path == ("name",)
        assert parsed.parts[1].transforms == ("uppercase",)
        assert parsed.parts[2] == "!"

    def test_single_token_expression(self):
        assert parse_expression("{{a.b}}").single_token.path == ("a", "b")

    def test_resolve_path_through_lists(self):
        assert resolve_path({"a": [{"b": 1}]}, ("a", "0", "b")) == 1

    def test_stringify(self):
        assert stringify(None) == ""
        assert stringify(False) == "false"
        assert stringify([1, 2]) == "[1,2]"
        assert stringify(1.5) == "1.5"
