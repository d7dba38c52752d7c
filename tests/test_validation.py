"""Unit tests for validation.py - Declaration document schema validation."""

from validation import (
    DECLARATION_SCHEMA,
    validate_declaration_document,
    validate_against_schema,
)


class TestValidateSpecAgainstSchema:
    """Tests for validate_against_schema function."""

    def test_valid_document(self):
        """Test a document matching the schema."""
        schema = {
            "type": "object",
            "required": ["name"],
            "properties": {"name": {"type": "string"}},
        }
        is_valid, error = validate_against_schema({"name": "x"}, schema)
        assert is_valid is True
        assert error is None

    def test_wrong_type_reports_path(self):
        """Test that errors are prefixed with the offending field path."""
        schema = {
            "type": "object",
            "properties": {"items": {"type": "array", "items": {"type": "integer"}}},
        }
        is_valid, error = validate_against_schema({"items": [1, "two"]}, schema)
        assert is_valid is False
        assert error.startswith("items.1:")

    def test_root_errors_use_root_marker(self):
        """Test that errors on the document itself are reported at (root)."""
        schema = {"type": "object", "required": ["name"]}
        is_valid, error = validate_against_schema({}, schema)
        assert is_valid is False
        assert error.startswith("(root):")
        assert "'name' is a required property" in error

    def test_multiple_errors_joined(self):
        """Test that all errors are reported, separated by semicolons."""
        schema = {"type": "object", "required": ["a", "b"]}
        is_valid, error = validate_against_schema({}, schema)
        assert is_valid is False
        assert error.count(";") == 1


class TestValidateDeclarationDocument:
    """Tests for validate_declaration_document function."""

    def test_sample_document_is_valid(self, sample_document):
        """Test the extractor's sample output."""
        is_valid, error = validate_declaration_document(sample_document)
        assert is_valid is True
        assert error is None

    def test_empty_collections_are_valid(self):
        """Test a document declaring nothing."""
        document = {"pluginTypes": [], "steps": [], "images": []}
        assert validate_declaration_document(document) == (True, None)

    def test_collections_required(self):
        """Test that all three collections must be present."""
        is_valid, error = validate_declaration_document({"pluginTypes": []})
        assert is_valid is False
        assert "'steps' is a required property" in error
        assert "'images' is a required property" in error

    def test_integer_enums_accepted(self, sample_document):
        """Test that stage, mode and imageType may be platform integers."""
        sample_document["steps"][0]["stage"] = 40
        sample_document["steps"][0]["mode"] = 0
        sample_document["images"][0]["imageType"] = 1
        assert validate_declaration_document(sample_document) == (True, None)

    def test_name_list_forms(self, sample_document):
        """Test that attribute lists may be arrays, strings or null."""
        for value in (["a", "b"], "a,b", None):
            sample_document["steps"][0]["filteringAttributes"] = value
            sample_document["images"][0]["attributes"] = value
            assert validate_declaration_document(sample_document) == (True, None)

    def test_name_list_rejects_numbers(self, sample_document):
        """Test that attribute lists must hold names."""
        sample_document["images"][0]["attributes"] = [1, 2]
        is_valid, error = validate_declaration_document(sample_document)
        assert is_valid is False
        assert error.startswith("images.0.attributes")

    def test_empty_type_name_rejected(self, sample_document):
        """Test that identity fields cannot be empty."""
        sample_document["pluginTypes"][0]["typeName"] = ""
        is_valid, error = validate_declaration_document(sample_document)
        assert is_valid is False
        assert "pluginTypes.0.typeName" in error

    def test_rank_must_be_integer(self, sample_document):
        """Test that rank is an integer."""
        sample_document["steps"][0]["rank"] = "first"
        is_valid, error = validate_declaration_document(sample_document)
        assert is_valid is False
        assert "steps.0.rank" in error

    def test_image_step_key_checked(self, sample_document):
        """Test that an image's step key carries all identity fields."""
        del sample_document["images"][0]["stepKey"]["stage"]
        is_valid, error = validate_declaration_document(sample_document)
        assert is_valid is False
        assert "images.0.stepKey" in error

    def test_schema_requires_camel_case_collections(self):
        """Test the collection names the extractor emits."""
        assert DECLARATION_SCHEMA["required"] == ["pluginTypes", "steps", "images"]
