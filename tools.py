"""MCP tools for caspio-mcp-server.

Each tool maps to exactly one CaspioClient call. Results come back as a
ToolResult so the dispatcher always answers with a well-formed
CallToolResult, whatever the backend did.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import mcp.types as types

from caspio_client import CaspioAPIError, CaspioClient

logger = logging.getLogger(__name__)

NOT_CONFIRMED_MESSAGE = "Deletion not confirmed. Set confirm=true to proceed."

# Tool results are tagged with one of these
SUCCESS = "success"
CONFIRMATION_REQUIRED = "confirmation_required"
NOT_FOUND = "not_found"
VALIDATION_ERROR = "validation_error"
FAILURE = "failure"


@dataclass
class ToolResult:
    status: str
    payload: Any

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS

    @classmethod
    def error(cls, status: str, message: str) -> "ToolResult":
        return cls(status, {"error": status, "message": message})

    def to_call_result(self) -> types.CallToolResult:
        text = json.dumps(self.payload, indent=2, default=str)
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=text)],
            isError=not self.ok,
        )


# ============== Tool definitions ==============

# Input schemas by tool name, checked before any call reaches Caspio
TOOL_SCHEMAS: dict[str, dict] = {}


def _tool(name: str, description: str, properties: dict = None, required: tuple = ()) -> types.Tool:
    schema = {"type": "object", "properties": properties or {}, "additionalProperties": False}
    if required:
        schema["required"] = list(required)
    TOOL_SCHEMAS[name] = schema
    return types.Tool(name=name, description=description, inputSchema=schema)


def _string(description: str) -> dict:
    return {"type": "string", "description": description}


def _integer(description: str) -> dict:
    return {"type": "integer", "description": description}


CONFIRM = {"type": "boolean", "description": "Must be true to confirm deletion"}

COLUMN_SCHEMA = {
    "type": "object",
    "properties": {
        "Name": _string("Column name"),
        "Type": _string("Data type (e.g., STRING, NUMBER, BOOLEAN, DATE/TIME, etc.)"),
        "Unique": {"type": "boolean", "description": "Whether values must be unique"},
        "Description": _string("Column description"),
        "Length": _integer("Maximum length for string fields"),
    },
    "required": ["Name", "Type"],
    "additionalProperties": True,
}

RECORD_SCHEMA = {
    "type": "object",
    "description": "Key-value pairs where keys are field names and values are field values",
    "additionalProperties": True,
}

QUERY_PROPERTIES = {
    "select": _string("Comma-separated list of fields to return"),
    "where": _string("Filter condition (e.g., \"Status='Active' AND Age>21\")"),
    "orderBy": _string("Sort order (e.g., \"LastName ASC, FirstName DESC\")"),
    "limit": _integer("Maximum number of records to return"),
    "pageNumber": _integer("Page number for pagination (1-based)"),
    "pageSize": _integer("Number of records per page"),
}

TABLE_NAME = _string("Name of the table")
VIEW_NAME = _string("Name of the view")
DIRECTORY_NAME = _string("Name of the directory")
EXTERNAL_KEY = _string("External key (unique identifier) of the user")

TOOLS = [
    # Tables
    _tool("caspio_list_tables", "List all tables in the Caspio account"),
    _tool(
        "caspio_get_table_schema",
        "Get the schema/definition of a specific table including all field definitions",
        {"tableName": TABLE_NAME},
        ("tableName",),
    ),
    _tool(
        "caspio_create_table",
        "Create a new table in Caspio",
        {
            "name": _string("Name for the new table"),
            "columns": {"type": "array", "description": "Array of column definitions", "items": COLUMN_SCHEMA, "minItems": 1},
            "note": _string("Optional description/note for the table"),
        },
        ("name", "columns"),
    ),
    _tool(
        "caspio_delete_table",
        "Delete a table from Caspio (USE WITH CAUTION - this action is irreversible)",
        {"tableName": _string("Name of the table to delete"), "confirm": CONFIRM},
        ("tableName", "confirm"),
    ),
    _tool(
        "caspio_add_field",
        "Add a new field/column to an existing table",
        {"tableName": TABLE_NAME, "field": COLUMN_SCHEMA},
        ("tableName", "field"),
    ),
    _tool(
        "caspio_delete_field",
        "Delete a field/column from a table (USE WITH CAUTION - this action is irreversible)",
        {"tableName": TABLE_NAME, "fieldName": _string("Name of the field to delete"), "confirm": CONFIRM},
        ("tableName", "fieldName", "confirm"),
    ),
    # Records
    _tool(
        "caspio_get_records",
        "Get records from a table with optional filtering, sorting, and pagination",
        {"tableName": TABLE_NAME, "groupBy": _string("Group by fields"), **QUERY_PROPERTIES},
        ("tableName",),
    ),
    _tool(
        "caspio_create_record",
        "Create a new record in a table",
        {"tableName": TABLE_NAME, "record": RECORD_SCHEMA},
        ("tableName", "record"),
    ),
    _tool(
        "caspio_create_records",
        "Create multiple records in a table at once (batch insert)",
        {
            "tableName": TABLE_NAME,
            "records": {"type": "array", "description": "Array of records to create", "items": RECORD_SCHEMA, "minItems": 1},
        },
        ("tableName", "records"),
    ),
    _tool(
        "caspio_update_records",
        "Update records matching a WHERE clause",
        {
            "tableName": TABLE_NAME,
            "updates": {"type": "object", "description": "Key-value pairs of fields to update", "additionalProperties": True},
            "where": _string("Filter condition to match records (e.g., \"ID=123\")"),
        },
        ("tableName", "updates", "where"),
    ),
    _tool(
        "caspio_delete_records",
        "Delete records matching a WHERE clause (USE WITH CAUTION - this action is irreversible)",
        {"tableName": TABLE_NAME, "where": _string("Filter condition to match records"), "confirm": CONFIRM},
        ("tableName", "where", "confirm"),
    ),
    # Views
    _tool("caspio_list_views", "List all views in the Caspio account"),
    _tool("caspio_get_view_schema", "Get the schema/definition of a specific view", {"viewName": VIEW_NAME}, ("viewName",)),
    _tool(
        "caspio_get_view_records",
        "Get records from a view with optional filtering and sorting",
        {"viewName": VIEW_NAME, **QUERY_PROPERTIES},
        ("viewName",),
    ),
    # Applications
    _tool("caspio_list_applications", "List all applications in the Caspio account"),
    _tool(
        "caspio_get_application",
        "Get details of a specific application",
        {"appName": _string("Name of the application")},
        ("appName",),
    ),
    # Files
    _tool(
        "caspio_list_files",
        "List files in a folder",
        {"folderPath": _string("Path to the folder (default: root folder \"/\")")},
    ),
    _tool(
        "caspio_get_file_metadata",
        "Get metadata for a specific file",
        {"filePath": _string("Path to the file")},
        ("filePath",),
    ),
    _tool(
        "caspio_delete_file",
        "Delete a file (USE WITH CAUTION - this action is irreversible)",
        {"filePath": _string("Path to the file to delete"), "confirm": CONFIRM},
        ("filePath", "confirm"),
    ),
    # Scheduled tasks
    _tool("caspio_list_tasks", "List all scheduled tasks"),
    _tool("caspio_get_task", "Get details of a specific scheduled task", {"taskName": _string("Name of the task")}, ("taskName",)),
    _tool("caspio_run_task", "Trigger a scheduled task to run immediately", {"taskName": _string("Name of the task to run")}, ("taskName",)),
    # Directories
    _tool("caspio_list_directories", "List all directories in the Caspio account"),
    _tool("caspio_get_directory", "Get details of a specific directory", {"directoryName": DIRECTORY_NAME}, ("directoryName",)),
    _tool(
        "caspio_list_directory_users",
        "List users in a directory with optional filtering",
        {"directoryName": DIRECTORY_NAME, **QUERY_PROPERTIES},
        ("directoryName",),
    ),
    _tool(
        "caspio_get_directory_user",
        "Get a specific user from a directory by their external key",
        {"directoryName": DIRECTORY_NAME, "externalKey": EXTERNAL_KEY},
        ("directoryName", "externalKey"),
    ),
    _tool(
        "caspio_create_directory_user",
        "Create a new user in a directory",
        {
            "directoryName": DIRECTORY_NAME,
            "user": {"type": "object", "description": "User data including username, password, email, etc.", "additionalProperties": True},
        },
        ("directoryName", "user"),
    ),
    _tool(
        "caspio_update_directory_user",
        "Update a user in a directory",
        {
            "directoryName": DIRECTORY_NAME,
            "externalKey": EXTERNAL_KEY,
            "updates": {"type": "object", "description": "Fields to update", "additionalProperties": True},
        },
        ("directoryName", "externalKey", "updates"),
    ),
    _tool(
        "caspio_delete_directory_user",
        "Delete a user from a directory (USE WITH CAUTION)",
        {"directoryName": DIRECTORY_NAME, "externalKey": EXTERNAL_KEY, "confirm": CONFIRM},
        ("directoryName", "externalKey", "confirm"),
    ),
    _tool(
        "caspio_activate_directory_user",
        "Activate a user in a directory",
        {"directoryName": DIRECTORY_NAME, "externalKey": EXTERNAL_KEY},
        ("directoryName", "externalKey"),
    ),
    _tool(
        "caspio_deactivate_directory_user",
        "Deactivate a user in a directory",
        {"directoryName": DIRECTORY_NAME, "externalKey": EXTERNAL_KEY},
        ("directoryName", "externalKey"),
    ),
    _tool(
        "caspio_authenticate_directory_user",
        "Authenticate a user against a directory. Returns user data if successful.",
        {"directoryName": DIRECTORY_NAME, "username": _string("Username to authenticate"), "password": _string("Password to verify")},
        ("directoryName", "username", "password"),
    ),
    # Utility
    _tool("caspio_test_connection", "Test the connection to Caspio API"),
    _tool("caspio_get_account_summary", "Get a summary of the Caspio account including tables, views, and applications"),
]

DESTRUCTIVE_TOOLS = frozenset({
    "caspio_delete_table",
    "caspio_delete_field",
    "caspio_delete_records",
    "caspio_delete_file",
    "caspio_delete_directory_user",
})


def list_tools() -> list[dict]:
    return [tool.model_dump(by_alias=True, exclude_none=True) for tool in TOOLS]


# ============== Tool handlers ==============

Handler = Callable[[CaspioClient, dict], Awaitable[Any]]
HANDLERS: dict[str, Handler] = {}


def handler(name: str):
    def register(func: Handler) -> Handler:
        HANDLERS[name] = func
        return func
    return register


def _query(args: dict, group_by: bool = False) -> dict:
    options = {
        "select": args.get("select"),
        "where": args.get("where"),
        "order_by": args.get("orderBy"),
        "limit": args.get("limit"),
        "page_number": args.get("pageNumber"),
        "page_size": args.get("pageSize"),
    }
    if group_by:
        options["group_by"] = args.get("groupBy")
    return options


@handler("caspio_list_tables")
async def _list_tables(client, args):
    return {"tables": await client.list_tables()}


@handler("caspio_get_table_schema")
async def _get_table_schema(client, args):
    return await client.get_table_definition(args["tableName"])


@handler("caspio_create_table")
async def _create_table(client, args):
    definition = {"Name": args["name"], "Columns": args["columns"]}
    if args.get("note"):
        definition["Note"] = args["note"]
    await client.create_table(definition)
    return {"success": True, "message": f"Table '{args['name']}' created successfully"}


@handler("caspio_delete_table")
async def _delete_table(client, args):
    await client.delete_table(args["tableName"])
    return {"success": True, "message": f"Table '{args['tableName']}' deleted"}


@handler("caspio_add_field")
async def _add_field(client, args):
    await client.add_field(args["tableName"], args["field"])
    return {"success": True, "message": f"Field added to '{args['tableName']}'"}


@handler("caspio_delete_field")
async def _delete_field(client, args):
    await client.delete_field(args["tableName"], args["fieldName"])
    return {"success": True, "message": f"Field '{args['fieldName']}' deleted from '{args['tableName']}'"}


@handler("caspio_get_records")
async def _get_records(client, args):
    records = await client.get_records(args["tableName"], **_query(args, group_by=True))
    return {"records": records, "count": len(records)}


@handler("caspio_create_record")
async def _create_record(client, args):
    return {"success": True, "record": await client.create_record(args["tableName"], args["record"])}


@handler("caspio_create_records")
async def _create_records(client, args):
    created = await client.create_records(args["tableName"], args["records"])
    return {"success": True, "records": created, "count": len(created)}


@handler("caspio_update_records")
async def _update_records(client, args):
    affected = await client.update_records(args["tableName"], args["updates"], args["where"])
    return {"success": True, "recordsAffected": affected}


@handler("caspio_delete_records")
async def _delete_records(client, args):
    return {"success": True, "recordsDeleted": await client.delete_records(args["tableName"], args["where"])}


@handler("caspio_list_views")
async def _list_views(client, args):
    return {"views": await client.list_views()}


@handler("caspio_get_view_schema")
async def _get_view_schema(client, args):
    return await client.get_view_definition(args["viewName"])


@handler("caspio_get_view_records")
async def _get_view_records(client, args):
    records = await client.get_view_records(args["viewName"], **_query(args))
    return {"records": records, "count": len(records)}


@handler("caspio_list_applications")
async def _list_applications(client, args):
    return {"applications": await client.list_applications()}


@handler("caspio_get_application")
async def _get_application(client, args):
    return await client.get_application(args["appName"])


@handler("caspio_list_files")
async def _list_files(client, args):
    return {"files": await client.list_files(args.get("folderPath") or "/")}


@handler("caspio_get_file_metadata")
async def _get_file_metadata(client, args):
    return await client.get_file_metadata(args["filePath"])


@handler("caspio_delete_file")
async def _delete_file(client, args):
    await client.delete_file(args["filePath"])
    return {"success": True, "message": f"File '{args['filePath']}' deleted"}


@handler("caspio_list_tasks")
async def _list_tasks(client, args):
    return {"tasks": await client.list_tasks()}


@handler("caspio_get_task")
async def _get_task(client, args):
    return await client.get_task(args["taskName"])


@handler("caspio_run_task")
async def _run_task(client, args):
    await client.run_task(args["taskName"])
    return {"success": True, "message": f"Task '{args['taskName']}' has been triggered"}


@handler("caspio_list_directories")
async def _list_directories(client, args):
    return {"directories": await client.list_directories()}


@handler("caspio_get_directory")
async def _get_directory(client, args):
    return await client.get_directory(args["directoryName"])


@handler("caspio_list_directory_users")
async def _list_directory_users(client, args):
    users = await client.list_directory_users(args["directoryName"], **_query(args))
    return {"users": users, "count": len(users)}


@handler("caspio_get_directory_user")
async def _get_directory_user(client, args):
    return await client.get_directory_user(args["directoryName"], args["externalKey"])


@handler("caspio_create_directory_user")
async def _create_directory_user(client, args):
    return {"success": True, "user": await client.create_directory_user(args["directoryName"], args["user"])}


@handler("caspio_update_directory_user")
async def _update_directory_user(client, args):
    user = await client.update_directory_user(args["directoryName"], args["externalKey"], args["updates"])
    return {"success": True, "user": user}


@handler("caspio_delete_directory_user")
async def _delete_directory_user(client, args):
    await client.delete_directory_user(args["directoryName"], args["externalKey"])
    return {"success": True, "message": f"User deleted from directory '{args['directoryName']}'"}


@handler("caspio_activate_directory_user")
async def _activate_directory_user(client, args):
    await client.activate_directory_user(args["directoryName"], args["externalKey"])
    return {"success": True, "message": f"User activated in directory '{args['directoryName']}'"}


@handler("caspio_deactivate_directory_user")
async def _deactivate_directory_user(client, args):
    await client.deactivate_directory_user(args["directoryName"], args["externalKey"])
    return {"success": True, "message": f"User deactivated in directory '{args['directoryName']}'"}


@handler("caspio_authenticate_directory_user")
async def _authenticate_directory_user(client, args):
    user = await client.authenticate_directory_user(args["directoryName"], args["username"], args["password"])
    return {"success": True, "authenticated": True, "user": user}


@handler("caspio_test_connection")
async def _test_connection(client, args):
    connected = await client.test_connection()
    return {"connected": connected, "message": "Connection successful" if connected else "Connection failed"}


@handler("caspio_get_account_summary")
async def _get_account_summary(client, args):
    return await client.get_account_summary()


# ============== Executor ==============

def check_arguments(name: str, arguments: dict) -> ToolResult | None:
    """Guard a call before it reaches Caspio.

    Destructive tools need ``confirm`` to be exactly true; every tool needs
    the arguments its schema marks as required.
    """
    if name in DESTRUCTIVE_TOOLS and arguments.get("confirm") is not True:
        return ToolResult.error(CONFIRMATION_REQUIRED, NOT_CONFIRMED_MESSAGE)

    required = TOOL_SCHEMAS[name].get("required", [])
    missing = [key for key in required if arguments.get(key) in (None, "")]
    if missing:
        return ToolResult.error(VALIDATION_ERROR, f"Missing required arguments: {', '.join(missing)}")
    return None


async def execute_tool(name: str, arguments: dict, client: CaspioClient) -> ToolResult:
    """Run one tool against the session's Caspio client."""
    if not isinstance(name, str) or name not in HANDLERS:
        return ToolResult.error(VALIDATION_ERROR, f"Unknown tool: {name}")
    if not isinstance(arguments, dict):
        return ToolResult.error(VALIDATION_ERROR, "Tool arguments must be an object")

    rejected = check_arguments(name, arguments)
    if rejected is not None:
        logger.info(f"[TOOL] {name} rejected: {rejected.status}")
        return rejected

    try:
        payload = await HANDLERS[name](client, arguments)
    except CaspioAPIError as e:
        # Caspio response bodies are not passed through to the client
        logger.warning(f"[TOOL] {name} failed: {e}")
        if e.status_code == 404:
            return ToolResult.error(NOT_FOUND, f"{name}: requested resource was not found")
        status = f" (status {e.status_code})" if e.status_code else ""
        return ToolResult.error(FAILURE, f"{name} failed{status}")
    except Exception:
        logger.exception(f"[TOOL] {name} raised an unexpected error")
        return ToolResult.error(FAILURE, f"{name} failed")

    if payload is None:
        return ToolResult.error(NOT_FOUND, f"{name}: requested resource was not found")

    logger.info(f"[TOOL] {name} succeeded")
    return ToolResult(SUCCESS, payload)
