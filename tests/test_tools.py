import json

import pytest

from caspio_client import CaspioAPIError
from conftest import RecordingClient
from tools import (
    CONFIRMATION_REQUIRED,
    DESTRUCTIVE_TOOLS,
    FAILURE,
    NOT_CONFIRMED_MESSAGE,
    NOT_FOUND,
    SUCCESS,
    TOOL_SCHEMAS,
    TOOLS,
    VALIDATION_ERROR,
    HANDLERS,
    ToolResult,
    execute_tool,
)

DESTRUCTIVE_ARGS = {
    "caspio_delete_table": {"tableName": "Customers"},
    "caspio_delete_field": {"tableName": "Customers", "fieldName": "Email"},
    "caspio_delete_records": {"tableName": "Customers", "where": "ID=1"},
    "caspio_delete_file": {"filePath": "/docs/a.pdf"},
    "caspio_delete_directory_user": {"directoryName": "Staff", "externalKey": "u-1"},
}


def test_catalog_matches_handlers():
    assert len(TOOLS) == 34
    assert {tool.name for tool in TOOLS} == set(HANDLERS)
    assert DESTRUCTIVE_TOOLS == set(DESTRUCTIVE_ARGS)


def test_required_arguments_come_from_own_schemas():
    assert set(TOOL_SCHEMAS) == set(HANDLERS)
    assert TOOL_SCHEMAS["caspio_delete_table"]["required"] == ["tableName", "confirm"]
    assert TOOL_SCHEMAS["caspio_get_records"]["required"] == ["tableName"]
    assert "required" not in TOOL_SCHEMAS["caspio_list_tables"]
    for tool in TOOLS:
        assert tool.model_dump(by_alias=True)["inputSchema"] == TOOL_SCHEMAS[tool.name]


@pytest.mark.parametrize("name", sorted(DESTRUCTIVE_ARGS))
@pytest.mark.parametrize("confirm", [None, False, "true", 1])
async def test_destructive_tools_need_literal_true(name, confirm):
    client = RecordingClient()
    args = dict(DESTRUCTIVE_ARGS[name])
    if confirm is not None:
        args["confirm"] = confirm

    result = await execute_tool(name, args, client)

    assert result.status == CONFIRMATION_REQUIRED
    assert result.payload["message"] == NOT_CONFIRMED_MESSAGE
    assert client.calls == []


async def test_confirmed_delete_reaches_backend():
    client = RecordingClient()
    result = await execute_tool("caspio_delete_records", {"tableName": "T", "where": "ID=1", "confirm": True}, client)
    assert result.status == SUCCESS
    assert client.calls == [("delete_records", ("T", "ID=1"), {})]


async def test_unknown_tool():
    client = RecordingClient()
    result = await execute_tool("caspio_drop_everything", {}, client)
    assert result.status == VALIDATION_ERROR
    assert client.calls == []


@pytest.mark.parametrize("name", [{}, ["caspio_list_tables"], None, 7])
async def test_non_string_tool_name(name):
    client = RecordingClient()
    result = await execute_tool(name, {}, client)
    assert result.status == VALIDATION_ERROR
    assert client.calls == []


async def test_missing_required_argument():
    client = RecordingClient()
    result = await execute_tool("caspio_get_records", {}, client)
    assert result.status == VALIDATION_ERROR
    assert "tableName" in result.payload["message"]
    assert client.calls == []


async def test_query_options_are_mapped():
    client = RecordingClient({"get_records": [{"ID": 1}]})
    result = await execute_tool(
        "caspio_get_records",
        {"tableName": "Orders", "where": "Total>5", "orderBy": "ID DESC", "limit": 10},
        client,
    )
    assert result.payload == {"records": [{"ID": 1}], "count": 1}
    name, args, kwargs = client.calls[0]
    assert (name, args) == ("get_records", ("Orders",))
    assert kwargs["where"] == "Total>5"
    assert kwargs["order_by"] == "ID DESC"
    assert kwargs["limit"] == 10


async def test_list_files_defaults_to_root():
    client = RecordingClient({"list_files": []})
    await execute_tool("caspio_list_files", {}, client)
    assert client.calls == [("list_files", ("/",), {})]


async def test_backend_404_is_not_found():
    error = CaspioAPIError("API request failed: 404 - secret body", status_code=404, body="secret body")
    result = await execute_tool("caspio_get_table_schema", {"tableName": "Nope"}, RecordingClient(error=error))
    assert result.status == NOT_FOUND


async def test_backend_failure_is_flattened():
    error = CaspioAPIError("API request failed: 500 - stack trace here", status_code=500, body="stack trace here")
    result = await execute_tool("caspio_list_tables", {}, RecordingClient(error=error))

    assert result.status == FAILURE
    assert "500" in result.payload["message"]
    assert "stack trace" not in json.dumps(result.payload)


async def test_unexpected_exception_is_failure():
    result = await execute_tool("caspio_list_views", {}, RecordingClient(error=RuntimeError("boom")))
    assert result.status == FAILURE
    assert "boom" not in result.payload["message"]


class TestToolResult:
    def test_success_envelope(self):
        call_result = ToolResult(SUCCESS, {"tables": ["A"]}).to_call_result()
        assert call_result.isError is False
        assert len(call_result.content) == 1
        assert json.loads(call_result.content[0].text) == {"tables": ["A"]}
        assert call_result.content[0].text == json.dumps({"tables": ["A"]}, indent=2)

    def test_error_envelope(self):
        call_result = ToolResult.error(FAILURE, "nope").to_call_result()
        assert call_result.isError is True
        assert json.loads(call_result.content[0].text) == {"error": FAILURE, "message": "nope"}

    def test_serialized_for_the_wire(self):
        wire = ToolResult.error(VALIDATION_ERROR, "bad").to_call_result().model_dump(by_alias=True, exclude_none=True)
        assert wire["isError"] is True
        assert wire["content"][0]["type"] == "text"
