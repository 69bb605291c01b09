"""Unit tests for the supervisor tool registry and reference data."""
import json
import pytest

from app.services.agent.reference_data import ReferenceDataset
from app.services.agent.tools import LookupPolicyDocumentArgs, ToolRegistry, build_default_tools


@pytest.fixture
def tools():
    return build_default_tools()


class TestToolSchemas:
    """Test the function schemas sent to the model."""

    def test_names_in_registration_order(self, tools):
        assert tools.names == ["lookupPolicyDocument", "getUserAccountInfo", "findNearestStore"]

    def test_schema_shape(self, tools):
        schema = tools.schemas()[0]

        assert schema["type"] == "function"
        assert schema["name"] == "lookupPolicyDocument"
        assert schema["parameters"] == {
            "type": "object",
            "properties": {
                "topic": {
                    "type": "string",
                    "description": "The topic or keyword to search for in company policies or documents.",
                }
            },
            "required": ["topic"],
            "additionalProperties": False,
        }

    def test_duplicate_registration_rejected(self, tools):
        with pytest.raises(ValueError):
            tools.register("findNearestStore", "dup", LookupPolicyDocumentArgs, lambda args: None)


class TestToolExecution:
    """Test executing tool calls."""

    def test_family_policy_lookup(self, tools):
        result = tools.execute("lookupPolicyDocument", json.dumps({"topic": "family"}))

        assert [doc["id"] for doc in result] == ["ID-010"]
        assert "up to 5 lines" in result[0]["content"]

    def test_policy_lookup_is_case_insensitive(self, tools):
        result = tools.execute("lookupPolicyDocument", '{"topic": "INTERNATIONAL"}')

        assert [doc["id"] for doc in result] == ["ID-030"]

    def test_policy_lookup_no_match(self, tools):
        assert tools.execute("lookupPolicyDocument", '{"topic": "satellite"}') == []

    def test_account_info(self, tools):
        result = tools.execute("getUserAccountInfo", '{"phone_number": "(206) 135-1246"}')

        assert result["accountId"] == "NT-123456"
        assert result["balanceDue"] == "$42.17"

    def test_store_by_zip(self, tools):
        result = tools.execute("findNearestStore", '{"zip_code": "10118"}')

        assert [store["name"] for store in result] == ["NewTelco New York City Midtown Store"]
        assert tools.execute("findNearestStore", '{"zip_code": "00000"}') == []

    def test_unknown_tool(self, tools):
        assert tools.execute("cancelAccount", "{}") == {"error": "unknown tool"}

    @pytest.mark.parametrize(
        "arguments",
        ["{not json", "{}", '{"topic": "family", "extra": 1}', '{"topic": 5}'],
    )
    def test_invalid_arguments(self, tools, arguments):
        result = tools.execute("lookupPolicyDocument", arguments)

        assert result == {"error": "invalid arguments for lookupPolicyDocument"}

    def test_custom_dataset(self, tmp_path):
        data_file = tmp_path / "data.yaml"
        data_file.write_text(
            "policy_documents:\n"
            "  - id: ID-900\n"
            "    name: Roaming\n"
            "    topic: roaming\n"
            "    content: Roaming is free.\n"
        )
        tools = build_default_tools(ReferenceDataset(str(data_file)))

        assert tools.execute("lookupPolicyDocument", '{"topic": "roaming"}')[0]["id"] == "ID-900"
        assert tools.execute("getUserAccountInfo", '{"phone_number": "x"}') == {}


def test_empty_registry():
    registry = ToolRegistry()

    assert registry.schemas() == []
    assert registry.execute("anything", None) == {"error": "unknown tool"}
