"""
Unit tests for placeholder extraction and substitution.
"""

from promptlab.prompts.templates import extract_variables, substitute_variables


class TestExtractVariables:
    """Test placeholder discovery."""

    def test_extracts_in_first_seen_order(self):
        """Names come back in the order they first appear."""
        assert extract_variables("Hello {{name}}, you are {{age}} years old.") == ["name", "age"]

    def test_duplicates_collapse(self):
        """Repeated placeholders are listed once."""
        assert extract_variables("{{a}} and {{b}}, {{a}} again") == ["a", "b"]

    def test_no_variables(self):
        """Plain text yields an empty list."""
        assert extract_variables("Hello world!") == []

    def test_non_word_names_ignored(self):
        """Only word characters form a placeholder name."""
        assert extract_variables("{{first name}} {{ok_1}} {{x-y}}") == ["ok_1"]

    def test_ascii_word_characters_only(self):
        """Non-ASCII names are not placeholders and survive substitution."""
        assert extract_variables("{{名前}} {{name}}") == ["name"]
        assert substitute_variables("{{名前}} {{name}}", {"名前": "x", "name": "y"}) == "{{名前}} y"

    def test_nested_braces(self):
        """The inner well-formed placeholder is still found."""
        assert extract_variables("{{outer{{inner}}}}") == ["inner"]


class TestSubstituteVariables:
    """Test placeholder substitution."""

    def test_substitutes_all_bindings(self):
        """Every bound placeholder is replaced."""
        result = substitute_variables(
            "Hello {{name}}, you are {{age}} years old.", {"name": "John", "age": "30"}
        )
        assert result == "Hello John, you are 30 years old."

    def test_missing_binding_left_verbatim(self):
        """Unbound placeholders stay exactly as written."""
        result = substitute_variables("Hello {{name}}, age {{age}}", {"name": "Ana"})
        assert result == "Hello Ana, age {{age}}"

    def test_repeated_placeholder_replaced_everywhere(self):
        """One binding fills every occurrence."""
        assert substitute_variables("{{x}}-{{x}}", {"x": "1"}) == "1-1"

    def test_empty_template(self):
        """Empty input stays empty."""
        assert substitute_variables("", {"name": "John"}) == ""

    def test_value_not_reinterpreted(self):
        """A value that looks like a placeholder is inserted literally."""
        assert substitute_variables("{{a}} {{b}}", {"a": "{{b}}"}) == "{{b}} {{b}}"

    def test_extracted_names_round_trip(self):
        """Binding every extracted name leaves no placeholders behind."""
        template = "Dear {{title}} {{surname}}, re: {{topic}}"
        bindings = {name: name.upper() for name in extract_variables(template)}
        result = substitute_variables(template, bindings)
        assert result == "Dear TITLE SURNAME, re: TOPIC"
        assert extract_variables(result) == []
