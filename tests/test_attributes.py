"""Tests for attribute validation and attribute sets."""

import pytest

from otel_utils.attributes import (
    EMPTY_ATTRIBUTES,
    AttributeBuilder,
    AttributeSet,
    attributes_from,
    validate_attribute,
)
from otel_utils.config import AttributeLimits
from otel_utils.exceptions import BuilderAlreadyBuiltError, InvalidAttributeError


class TestValidateAttribute:
    """Tests for validate_attribute."""

    @pytest.mark.parametrize("value", ["text", True, 42, 3.5])
    def test_scalars_accepted(self, value):
        """Test that supported scalars are returned unchanged."""
        assert validate_attribute("k", value) == value

    def test_sequence_returned_as_tuple(self):
        """Test that sequences are frozen into tuples."""
        assert validate_attribute("k", ["a", "b"]) == ("a", "b")
        assert validate_attribute("k", []) == ()

    @pytest.mark.parametrize("value", [None, b"bytes", {"a": 1}, object(), {1, 2}])
    def test_unsupported_types_rejected(self, value):
        """Test rejecting unsupported value types."""
        with pytest.raises(InvalidAttributeError):
            validate_attribute("k", value)

    def test_heterogeneous_sequence_rejected(self):
        """Test that mixed sequences are rejected."""
        with pytest.raises(InvalidAttributeError):
            validate_attribute("k", [1, "two"])

    def test_bool_and_int_not_mixed(self):
        """Test that bools are not accepted in int sequences."""
        with pytest.raises(InvalidAttributeError):
            validate_attribute("k", [1, True])

    def test_sequence_with_none_rejected(self):
        """Test that None items are rejected."""
        with pytest.raises(InvalidAttributeError):
            validate_attribute("k", ["a", None])

    def test_string_too_long(self):
        """Test the string length cap."""
        limits = AttributeLimits(max_value_length=4)
        assert validate_attribute("k", "abcd", limits) == "abcd"
        with pytest.raises(InvalidAttributeError) as exc_info:
            validate_attribute("k", "abcde", limits)
        assert exc_info.value.key == "k"

    def test_sequence_too_long(self):
        """Test the sequence length cap."""
        limits = AttributeLimits(max_sequence_length=2)
        with pytest.raises(InvalidAttributeError):
            validate_attribute("k", [1, 2, 3], limits)


class TestAttributeBuilder:
    """Tests for AttributeBuilder."""

    def test_build(self):
        """Test building a set from chained puts."""
        attrs = AttributeBuilder().put("db.system", "postgresql").put("db.rows", 12).build()
        assert dict(attrs) == {"db.system": "postgresql", "db.rows": 12}

    def test_duplicate_key_last_wins(self):
        """Test that the last value for a key wins."""
        attrs = AttributeBuilder().put("k", 1).put("k", 2).build()
        assert attrs["k"] == 2
        assert len(attrs) == 1

    def test_key_sanitized(self):
        """Test that keys are sanitized."""
        attrs = AttributeBuilder().put("user id", "u1").build()
        assert attrs["user_id"] == "u1"

    def test_sanitized_keys_collide(self):
        """Test that keys equal after sanitization collapse to one entry."""
        attrs = AttributeBuilder().put("a b", 1).put("a_b", 2).build()
        assert dict(attrs) == {"a_b": 2}

    @pytest.mark.parametrize("key", ["", "   ", None])
    def test_invalid_key_rejected(self, key):
        """Test that empty keys raise InvalidAttributeError."""
        with pytest.raises(InvalidAttributeError):
            AttributeBuilder().put(key, "v")

    def test_invalid_value_rejected(self):
        """Test that invalid values raise InvalidAttributeError."""
        with pytest.raises(InvalidAttributeError):
            AttributeBuilder().put("k", None)

    def test_put_after_build_rejected(self):
        """Test that a built builder is frozen."""
        builder = AttributeBuilder().put("k", "v")
        builder.build()
        assert builder.is_built
        with pytest.raises(BuilderAlreadyBuiltError):
            builder.put("k2", "v2")
        with pytest.raises(BuilderAlreadyBuiltError):
            builder.put_all({"k3": 1})

    def test_build_twice_returns_same_set(self):
        """Test that build() is idempotent."""
        builder = AttributeBuilder().put("k", "v")
        assert builder.build() is builder.build()

    def test_empty_build(self):
        """Test building with no attributes."""
        attrs = AttributeBuilder().build()
        assert len(attrs) == 0

    def test_max_attributes(self):
        """Test the attribute count cap."""
        builder = AttributeBuilder(limits=AttributeLimits(max_attributes=2))
        builder.put("a", 1).put("b", 2)
        builder.put("a", 3)
        with pytest.raises(InvalidAttributeError):
            builder.put("c", 4)

    def test_put_all(self):
        """Test adding a mapping."""
        attrs = AttributeBuilder().put_all({"a": 1, "b": [1.0, 2.0]}).build()
        assert attrs["b"] == (1.0, 2.0)


class TestAttributeSet:
    """Tests for AttributeSet."""

    def test_immutable(self):
        """Test that the set cannot be mutated."""
        attrs = attributes_from({"k": "v"})
        with pytest.raises(TypeError):
            attrs["k"] = "other"  # type: ignore[index]

    def test_unaffected_by_source_mutation(self):
        """Test that the set copies its source."""
        source = {"k": "v"}
        attrs = AttributeSet(source)
        source["k"] = "changed"
        assert attrs["k"] == "v"

    def test_merge_other_wins(self):
        """Test that merge prefers the other mapping."""
        merged = attributes_from({"a": 1, "b": 2}).merge({"b": 3})
        assert dict(merged) == {"a": 1, "b": 3}

    def test_merge_empty_returns_self(self):
        """Test merging nothing."""
        attrs = attributes_from({"a": 1})
        assert attrs.merge(None) is attrs

    def test_hashable_and_equal(self):
        """Test equality and hashing of equal sets."""
        first = attributes_from({"a": 1, "b": ("x",)})
        second = attributes_from({"a": 1, "b": ["x"]})
        assert first == second
        assert hash(first) == hash(second)

    def test_to_dict_is_copy(self):
        """Test that to_dict returns a mutable copy."""
        attrs = attributes_from({"a": 1})
        copy = attrs.to_dict()
        copy["a"] = 2
        assert attrs["a"] == 1


class TestAttributesFrom:
    """Tests for attributes_from."""

    def test_none_returns_empty(self):
        """Test that None yields the empty set."""
        assert attributes_from(None) is EMPTY_ATTRIBUTES

    def test_attribute_set_passthrough(self):
        """Test that an AttributeSet is returned as-is."""
        attrs = attributes_from({"a": 1})
        assert attributes_from(attrs) is attrs
