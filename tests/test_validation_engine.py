"""Unit tests for the Validation Engine."""

import dataclasses
import datetime as dt
from concurrent.futures import ThreadPoolExecutor

import pytest

import formschema as fs
from formschema import ABSENT, Failure, IssueCode, RefinementIssue, Success
from formschema.validation.engine import VALIDATORS, parse, safe_parse, validate
from formschema.validation.errors import ParseError, SchemaDefinitionError


# ─── Fixtures ───


def _codes(result) -> list:
    return [issue.code for issue in result.issues]


def _paths(result) -> list:
    return [issue.path for issue in result.issues]


def _person_schema(unknown_keys: str = "strip") -> fs.ObjectNode:
    return fs.object_(
        {
            "name": fs.string().min(2),
            "age": fs.number().int_().nonnegative(),
            "nickname": fs.string().optional(),
        },
        unknown_keys=unknown_keys,
    )


def _address_schema() -> fs.ObjectNode:
    return fs.object_(
        {
            "street": fs.string().nonempty(),
            "zip": fs.string().regex(r"^\d{5}$", "ZIP must be 5 digits"),
        }
    )


# ═══════════════════════════════════════════════════════════
# Primitive: string
# ═══════════════════════════════════════════════════════════


class TestStringPrimitive:
    def test_accepts_string(self):
        result = validate(fs.string(), "hello")
        assert isinstance(result, Success)
        assert result.value == "hello"

    def test_absent_is_required(self):
        result = validate(fs.string())
        assert _codes(result) == [IssueCode.REQUIRED]
        assert result.issues[0].message == "Required"
        assert result.issues[0].path == ()

    def test_number_is_type_mismatch_without_coercion(self):
        result = validate(fs.string(), 5)
        assert _codes(result) == [IssueCode.INVALID_TYPE]
        assert result.issues[0].message == "Expected string, received number"

    def test_null_is_type_mismatch(self):
        result = validate(fs.string(coerce=True), None)
        assert result.issues[0].message == "Expected string, received null"

    def test_coerces_when_requested(self):
        assert validate(fs.string(coerce=True), 42).value == "42"

    def test_every_failing_constraint_is_reported(self):
        schema = fs.string().min(5).email()
        result = validate(schema, "ab")
        assert _codes(result) == [IssueCode.TOO_SMALL, IssueCode.INVALID_STRING]
        assert result.issues[0].message == (
            "String must contain at least 5 character(s)"
        )
        assert result.issues[1].message == "Invalid email"

    def test_constraints_keep_declared_order(self):
        schema = fs.string().email("bad email").max(3, "too long")
        result = validate(schema, "not-an-email")
        assert [i.message for i in result.issues] == ["bad email", "too long"]

    def test_length_and_affixes(self):
        schema = fs.string().length(4).startswith("ab").endswith("z")
        assert validate(schema, "abyz").ok
        result = validate(schema, "xbyy")
        assert len(result.issues) == 2

    def test_url(self):
        assert validate(fs.string().url(), "https://example.com/a").ok
        assert _codes(validate(fs.string().url(), "example")) == [
            IssueCode.INVALID_STRING
        ]

    def test_custom_check(self):
        schema = fs.string().check(str.isupper, "Must be upper case")
        result = validate(schema, "abc")
        assert _codes(result) == [IssueCode.CUSTOM]
        assert result.issues[0].message == "Must be upper case"

    def test_number_only_builder_rejected(self):
        with pytest.raises(SchemaDefinitionError):
            fs.string().gt(3)


# ═══════════════════════════════════════════════════════════
# Primitive: number
# ═══════════════════════════════════════════════════════════


class TestNumberPrimitive:
    def test_accepts_int_and_float(self):
        assert validate(fs.number(), 3).value == 3
        assert validate(fs.number(), 2.5).value == 2.5

    def test_boolean_is_not_a_number(self):
        result = validate(fs.number(coerce=True), True)
        assert _codes(result) == [IssueCode.INVALID_TYPE]
        assert result.issues[0].message == "Expected number, received boolean"

    def test_nan_is_type_mismatch(self):
        result = validate(fs.number().min(0), float("nan"))
        assert _codes(result) == [IssueCode.INVALID_TYPE]
        assert result.issues[0].message == "Expected number, received nan"

    def test_string_rejected_without_coercion(self):
        result = validate(fs.number(), "10")
        assert _codes(result) == [IssueCode.INVALID_TYPE]

    def test_string_parsed_with_coercion(self):
        schema = fs.number(coerce=True)
        assert validate(schema, "1000").value == 1000
        assert isinstance(validate(schema, "1000").value, int)
        assert validate(schema, " 12.5 ").value == 12.5

    def test_unparsable_string_is_type_mismatch_not_range(self):
        schema = fs.number(coerce=True).min(1000)
        for raw in ("abc", "", "   ", "nan", "1_000"):
            result = validate(schema, raw)
            assert _codes(result) == [IssueCode.INVALID_TYPE], raw

    def test_non_finite_string_is_type_mismatch(self):
        schema = fs.number(coerce=True).int_()
        for raw in ("inf", "-Infinity", "1e400", "1" * 5000):
            result = validate(schema, raw)
            assert _codes(result) == [IssueCode.INVALID_TYPE], raw[:10]

    def test_bounds(self):
        schema = fs.number().min(1).max(10)
        assert _codes(validate(schema, 0)) == [IssueCode.TOO_SMALL]
        assert _codes(validate(schema, 11)) == [IssueCode.TOO_BIG]
        assert validate(schema, 1).ok
        assert validate(schema, 10).ok
        assert validate(schema, 0).issues[0].message == (
            "Number must be greater than or equal to 1"
        )

    def test_exclusive_bounds(self):
        assert validate(fs.number().positive(), 0).issues[0].message == (
            "Number must be greater than 0"
        )
        assert _codes(validate(fs.number().negative(), 0)) == [IssueCode.TOO_BIG]

    def test_integer_check(self):
        schema = fs.number().int_()
        assert validate(schema, 4.0).ok
        assert _codes(validate(schema, 3.5)) == [IssueCode.NOT_INTEGER]

    def test_multiple_of(self):
        assert _codes(validate(fs.number().multiple_of(5), 12)) == [
            IssueCode.NOT_MULTIPLE_OF
        ]
        assert validate(fs.number().multiple_of(0.1), 0.3).ok

    def test_all_constraint_failures_reported(self):
        schema = fs.number().int_().min(10).multiple_of(4)
        result = validate(schema, 2.5)
        assert _codes(result) == [
            IssueCode.NOT_INTEGER,
            IssueCode.TOO_SMALL,
            IssueCode.NOT_MULTIPLE_OF,
        ]

    def test_bad_bound_is_definition_error(self):
        with pytest.raises(SchemaDefinitionError):
            fs.number().min("10")
        with pytest.raises(SchemaDefinitionError):
            fs.number().multiple_of(0)


# ═══════════════════════════════════════════════════════════
# Primitive: boolean / date
# ═══════════════════════════════════════════════════════════


class TestBooleanPrimitive:
    def test_accepts_bool(self):
        assert validate(fs.boolean(), False).value is False

    def test_string_rejected_without_coercion(self):
        assert _codes(validate(fs.boolean(), "true")) == [IssueCode.INVALID_TYPE]

    def test_string_parsed_with_coercion(self):
        schema = fs.boolean(coerce=True)
        assert validate(schema, "Yes").value is True
        assert validate(schema, "off").value is False
        assert _codes(validate(schema, "maybe")) == [IssueCode.INVALID_TYPE]

    def test_min_not_available(self):
        with pytest.raises(SchemaDefinitionError):
            fs.boolean().min(1)


class TestDatePrimitive:
    def test_accepts_datetime(self):
        moment = dt.datetime(2021, 5, 4, 12, 30)
        assert validate(fs.date(), moment).value == moment

    def test_date_promoted_to_midnight(self):
        assert validate(fs.date(), dt.date(2020, 1, 2)).value == dt.datetime(
            2020, 1, 2
        )

    def test_string_rejected_without_coercion(self):
        result = validate(fs.date(), "2020-01-02")
        assert result.issues[0].message == "Expected date, received string"

    def test_iso_string_parsed_with_coercion(self):
        assert validate(fs.date(coerce=True), "2020-01-02").value == dt.datetime(
            2020, 1, 2
        )

    def test_unparsable_string_is_type_mismatch(self):
        schema = fs.date(coerce=True).min(dt.date(2000, 1, 1))
        assert _codes(validate(schema, "not a date")) == [IssueCode.INVALID_TYPE]

    def test_epoch_milliseconds(self):
        value = validate(fs.date(coerce=True), 86_400_000).value
        assert value == dt.datetime(1970, 1, 2, tzinfo=dt.timezone.utc)

    def test_bounds_compare_instants(self):
        schema = fs.date(coerce=True).min(dt.date(2000, 1, 1))
        assert _codes(validate(schema, "1999-12-31")) == [IssueCode.TOO_SMALL]
        assert validate(schema, "2000-01-01").ok

    def test_naive_and_aware_mix(self):
        cutoff = dt.datetime(2000, 1, 1, tzinfo=dt.timezone.utc)
        schema = fs.date(coerce=True).max(cutoff)
        assert validate(schema, "1999-12-31T23:00").ok
        assert _codes(validate(schema, "2000-01-01T01:00+00:00")) == [
            IssueCode.TOO_BIG
        ]


# ═══════════════════════════════════════════════════════════
# Enum
# ═══════════════════════════════════════════════════════════


class TestEnum:
    def test_accepts_member(self):
        assert validate(fs.enum_(["a", "b"]), "b").value == "b"

    def test_rejects_non_member_with_allowed_set(self):
        result = validate(fs.enum_(["a", "b"]), "c")
        assert _codes(result) == [IssueCode.INVALID_ENUM_VALUE]
        assert result.issues[0].message == (
            "Invalid enum value. Expected 'a' | 'b', received 'c'"
        )

    def test_booleans_do_not_match_integers(self):
        assert not validate(fs.enum_([0, 1]), True).ok

    def test_absent_is_required(self):
        assert _codes(validate(fs.enum_(["a"]))) == [IssueCode.REQUIRED]

    def test_options_from_python_enum(self):
        import enum

        class Payout(enum.Enum):
            SINGLE = "single"
            JOINT = "joint-life"

        node = fs.enum_(Payout)
        assert node.options == ("single", "joint-life")
        assert node.enum == {"single": "single", "joint-life": "joint-life"}

    def test_extract_and_exclude(self):
        node = fs.enum_(["a", "b", "c"])
        assert node.extract(["c", "a"]).options == ("a", "c")
        assert node.exclude(["b"]).options == ("a", "c")
        with pytest.raises(SchemaDefinitionError):
            node.extract(["z"])

    def test_invalid_definitions(self):
        with pytest.raises(SchemaDefinitionError):
            fs.enum_([])
        with pytest.raises(SchemaDefinitionError):
            fs.enum_(["a", "a"])


# ═══════════════════════════════════════════════════════════
# Optional / Nullable / Default / Preprocess
# ═══════════════════════════════════════════════════════════


class TestWrappers:
    def test_optional_accepts_absent(self):
        result = validate(fs.string().optional())
        assert result.ok
        assert result.value is ABSENT

    def test_optional_delegates_present_values(self):
        result = validate(fs.string().min(3).optional(), "ab")
        assert _codes(result) == [IssueCode.TOO_SMALL]

    def test_optional_does_not_accept_null(self):
        result = validate(fs.string().optional(), None)
        assert _codes(result) == [IssueCode.INVALID_TYPE]

    def test_optional_is_not_double_wrapped(self):
        node = fs.string().optional()
        assert node.optional() is node

    def test_nullable(self):
        node = fs.number().nullable()
        assert validate(node, None).value is None
        assert validate(node, 3).value == 3
        assert _codes(validate(node)) == [IssueCode.REQUIRED]

    def test_nullish(self):
        node = fs.number().nullish()
        assert validate(node).ok
        assert validate(node, None).ok

    def test_default_substitutes_and_validates_fallback(self):
        assert validate(fs.number().default(5)).value == 5
        assert validate(fs.number().default(5), 7).value == 7
        result = validate(fs.number().min(10).default(5))
        assert _codes(result) == [IssueCode.TOO_SMALL]

    def test_default_calls_factories(self):
        node = fs.array_(fs.string()).default(list)
        first = validate(node).value
        second = validate(node).value
        assert first == [] and second == []
        assert first is not second

    def test_default_only_for_absent(self):
        result = validate(fs.string().default("x"), None)
        assert _codes(result) == [IssueCode.INVALID_TYPE]

    def test_preprocess_transforms_before_validation(self):
        node = fs.preprocess(str.strip, fs.string().min(2))
        assert validate(node, "  ab  ").value == "ab"

    def test_preprocess_can_map_blank_to_absent(self):
        node = fs.preprocess(
            lambda v: ABSENT if v == "" else v,
            fs.number(coerce=True).optional(),
        )
        assert validate(node, "").value is ABSENT
        assert validate(node, "4").value == 4

    def test_preprocess_fault_propagates(self):
        node = fs.preprocess(lambda v: 1 / 0, fs.number())
        with pytest.raises(ZeroDivisionError):
            validate(node, 1)

    def test_wrappers_need_nodes(self):
        with pytest.raises(SchemaDefinitionError):
            fs.optional("not a node")


# ═══════════════════════════════════════════════════════════
# Object
# ═══════════════════════════════════════════════════════════


class TestObject:
    def test_valid_record(self):
        result = validate(_person_schema(), {"name": "Ada", "age": 36})
        assert result.value == {"name": "Ada", "age": 36}

    def test_absent_optional_field_is_left_out(self):
        result = validate(_person_schema(), {"name": "Ada", "age": 36})
        assert "nickname" not in result.value

    def test_accumulates_every_field_issue(self):
        result = validate(_person_schema(), {"name": "A", "age": -1.5})
        assert _paths(result) == [("name",), ("age",), ("age",)]
        assert _codes(result) == [
            IssueCode.TOO_SMALL,
            IssueCode.NOT_INTEGER,
            IssueCode.TOO_SMALL,
        ]

    def test_issues_follow_declared_field_order(self):
        result = validate(_person_schema(), {"age": "x", "name": 1})
        assert _paths(result) == [("name",), ("age",)]

    def test_missing_fields_are_required(self):
        result = validate(_person_schema(), {})
        assert _paths(result) == [("name",), ("age",)]
        assert _codes(result) == [IssueCode.REQUIRED, IssueCode.REQUIRED]

    def test_non_mapping_input(self):
        result = validate(_person_schema(), ["Ada"])
        assert result.issues[0].message == "Expected object, received array"
        assert _codes(validate(_person_schema())) == [IssueCode.REQUIRED]

    def test_unknown_keys_stripped(self):
        result = validate(_person_schema(), {"name": "Ada", "age": 1, "x": 1})
        assert result.value == {"name": "Ada", "age": 1}

    def test_unknown_keys_passed_through(self):
        schema = _person_schema("passthrough")
        result = validate(schema, {"name": "Ada", "age": 1, "x": 1})
        assert result.value == {"name": "Ada", "age": 1, "x": 1}

    def test_unknown_keys_rejected_after_field_issues(self):
        schema = _person_schema("reject")
        result = validate(schema, {"name": "A", "age": 1, "x": 1, "y": 2})
        assert _codes(result) == [IssueCode.TOO_SMALL, IssueCode.UNRECOGNIZED_KEYS]
        assert result.issues[1].path == ()
        assert result.issues[1].message == "Unrecognized key(s) in object: 'x', 'y'"

    def test_nested_paths(self):
        schema = fs.object_({"address": _address_schema()})
        result = validate(schema, {"address": {"street": "", "zip": "12"}})
        assert _paths(result) == [("address", "street"), ("address", "zip")]
        assert result.issues[1].message == "ZIP must be 5 digits"

    def test_path_prefix(self):
        result = validate(_address_schema(), {"street": "Main"}, path=("home",))
        assert _paths(result) == [("home", "zip")]

    def test_input_not_mutated(self):
        raw = {"name": "Ada", "age": 1, "extra": True}
        validate(_person_schema(), raw)
        assert raw == {"name": "Ada", "age": 1, "extra": True}

    def test_bad_policy(self):
        with pytest.raises(SchemaDefinitionError):
            fs.ObjectNode({"a": fs.string()}, "ignore")

    def test_field_values_must_be_nodes(self):
        with pytest.raises(SchemaDefinitionError):
            fs.object_({"a": str})


# ═══════════════════════════════════════════════════════════
# Array
# ═══════════════════════════════════════════════════════════


class TestArray:
    def test_valid_items(self):
        assert validate(fs.array_(fs.number()), (1, 2)).value == [1, 2]

    def test_element_issues_carry_index(self):
        schema = fs.object_({"tags": fs.array_(fs.string().min(2))})
        result = validate(schema, {"tags": ["ok", "x", 3]})
        assert _paths(result) == [("tags", 1), ("tags", 2)]

    def test_length_issues_come_first(self):
        schema = fs.array_(fs.string()).max(1)
        result = validate(schema, ["a", 2])
        assert _codes(result) == [IssueCode.TOO_BIG, IssueCode.INVALID_TYPE]
        assert _paths(result) == [(), (1,)]

    def test_string_is_not_an_array(self):
        result = validate(fs.array_(fs.string()), "abc")
        assert result.issues[0].message == "Expected array, received string"

    def test_nonempty(self):
        assert _codes(validate(fs.array_(fs.string()).nonempty(), [])) == [
            IssueCode.TOO_SMALL
        ]


# ═══════════════════════════════════════════════════════════
# Refinement
# ═══════════════════════════════════════════════════════════


def _password_form() -> fs.ObjectNode:
    return fs.object_(
        {"password": fs.string().min(8), "confirm": fs.string()}
    )


class TestRefinement:
    def test_passes_through_when_check_passes(self):
        schema = _password_form().refine(
            lambda v: v["password"] == v["confirm"], "Passwords differ"
        )
        value = {"password": "abcdefgh", "confirm": "abcdefgh"}
        assert validate(schema, value).value == value

    def test_issue_path_is_relative_to_refined_node(self):
        schema = fs.object_(
            {
                "account": _password_form().refine(
                    lambda v: v["password"] == v["confirm"],
                    "Passwords differ",
                    path=["confirm"],
                )
            }
        )
        result = validate(
            schema, {"account": {"password": "abcdefgh", "confirm": "x"}}
        )
        assert _paths(result) == [("account", "confirm")]
        assert _codes(result) == [IssueCode.CUSTOM]

    def test_check_skipped_when_base_fails(self):
        calls = []
        schema = _password_form().super_refine(lambda v: calls.append(v))
        result = validate(schema, {"password": "short", "confirm": "short"})
        assert _codes(result) == [IssueCode.TOO_SMALL]
        assert calls == []

    def test_field_issues_precede_later_field_refinements(self):
        schema = fs.object_(
            {
                "a": fs.number().refine(lambda v: v % 2 == 0, "a must be even"),
                "b": fs.string(),
            }
        )
        result = validate(schema, {"a": 3, "b": 4})
        assert [i.message for i in result.issues] == [
            "a must be even",
            "Expected string, received number",
        ]

    def test_chained_refinements_all_run(self):
        schema = (
            fs.number()
            .refine(lambda v: v > 10, "too small")
            .refine(lambda v: v % 2 == 0, "odd")
        )
        result = validate(schema, 3)
        assert [i.message for i in result.issues] == ["too small", "odd"]

    def test_fatal_issue_stops_later_refinements(self):
        later = []
        schema = (
            fs.number()
            .super_refine(lambda v: [RefinementIssue("stop here", fatal=True)])
            .super_refine(lambda v: later.append(v))
        )
        result = validate(schema, 3)
        assert [i.message for i in result.issues] == ["stop here"]
        assert result.issues[0].fatal is True
        assert later == []

    def test_fatal_refinement_flag(self):
        schema = (
            fs.number()
            .refine(lambda v: v > 10, "too small", fatal=True)
            .refine(lambda v: v % 2 == 0, "odd")
        )
        assert [i.message for i in validate(schema, 3).issues] == ["too small"]
        assert [i.message for i in validate(schema, 13).issues] == ["odd"]

    def test_fatal_refinement_that_passes_does_not_stop_chain(self):
        schema = (
            fs.number()
            .refine(lambda v: v > 0, "negative", fatal=True)
            .refine(lambda v: v % 2 == 0, "odd")
        )
        assert [i.message for i in validate(schema, 3).issues] == ["odd"]

    def test_super_refine_multiple_issues_and_strings(self):
        def check(value):
            return ["first", RefinementIssue("second", path=("x",))]

        result = validate(fs.object_({"x": fs.number()}).super_refine(check), {"x": 1})
        assert _paths(result) == [(), ("x",)]
        assert [i.message for i in result.issues] == ["first", "second"]

    def test_check_fault_propagates(self):
        schema = fs.number().refine(lambda v: v / 0 > 1)
        with pytest.raises(ZeroDivisionError):
            validate(schema, 1)


# ═══════════════════════════════════════════════════════════
# Entry points
# ═══════════════════════════════════════════════════════════


class TestEntryPoints:
    def test_safe_parse_converts_host_fault(self, caplog):
        schema = fs.preprocess(lambda v: v["missing"], fs.string())
        with caplog.at_level("ERROR", logger="formschema.validation.engine"):
            result = safe_parse(schema, {})
        assert isinstance(result, Failure)
        assert _codes(result) == [IssueCode.HOST_FAULT]
        assert result.issues[0].path == ()
        assert result.issues[0].message == "Validation could not be completed"
        assert "Host fault" in caplog.text

    def test_safe_parse_returns_regular_results(self):
        assert safe_parse(fs.string(), "a").value == "a"
        assert _codes(safe_parse(fs.string(), 1)) == [IssueCode.INVALID_TYPE]

    def test_parse_returns_value(self):
        assert parse(fs.number(coerce=True), "3") == 3

    def test_parse_raises_with_issues(self):
        with pytest.raises(ParseError) as excinfo:
            parse(_person_schema(), {"name": "A"})
        assert [i.path for i in excinfo.value.issues] == [("name",), ("age",)]
        assert "2 validation issue(s)" in str(excinfo.value)

    def test_parse_lets_host_faults_through(self):
        schema = fs.number().refine(lambda v: v / 0 > 1)
        with pytest.raises(ZeroDivisionError):
            parse(schema, 1)

    def test_node_methods(self):
        node = fs.number(coerce=True).min(2)
        assert node.validate("3").value == 3
        assert node.safe_parse("1").issues[0].code == IssueCode.TOO_SMALL
        assert node.parse("2") == 2

    def test_unsupported_node_kind(self):
        class Custom(fs.SchemaNode):
            pass

        with pytest.raises(TypeError):
            validate(Custom(), 1)
        assert _codes(safe_parse(Custom(), 1)) == [IssueCode.HOST_FAULT]

    def test_every_node_kind_is_registered(self):
        assert set(VALIDATORS) == {
            fs.Primitive,
            fs.EnumNode,
            fs.OptionalNode,
            fs.NullableNode,
            fs.DefaultNode,
            fs.PreprocessNode,
            fs.ObjectNode,
            fs.ArrayNode,
            fs.RefinementNode,
        }


# ═══════════════════════════════════════════════════════════
# Immutability
# ═══════════════════════════════════════════════════════════


class TestImmutability:
    def test_builders_return_new_nodes(self):
        base = fs.number()
        bounded = base.min(1)
        assert base.constraints == ()
        assert len(bounded.constraints) == 1
        assert validate(base, 0).ok

    def test_nodes_are_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            fs.string().kind = "number"

    def test_object_fields_are_read_only(self):
        source = {"a": fs.string()}
        schema = fs.object_(source)
        source["b"] = fs.number()
        assert list(schema.fields) == ["a"]
        with pytest.raises(TypeError):
            schema.fields["c"] = fs.string()

    def test_object_nodes_are_hashable(self):
        schema = fs.object_({"a": fs.string()})
        same = fs.object_({"a": schema.fields["a"]})
        assert hash(schema) == hash(same)
        assert hash(schema.optional()) == hash(same.optional())
        assert hash(fs.array_(schema).nullable()) == hash(fs.array_(same).nullable())
        assert len({schema, same, schema.strict()}) == 2

    def test_shared_across_threads(self):
        schema = _person_schema()
        inputs = [{"name": "Ada", "age": i} for i in range(50)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda raw: validate(schema, raw), inputs))
        assert [r.value["age"] for r in results] == list(range(50))
