"""
Route table and tool catalog.

``API_ROUTES`` is the single mapping between the stdio adapter's passthrough
RPC methods, the local REST API's HTTP routes and the capability each route
is served by. ``TOOLS`` describes the same capabilities to the LLM host.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

SERVER_NAME = "Microsoft 365 MCP Gateway"
SERVER_VERSION = "1.0.0"
DEFAULT_PROTOCOL_VERSION = "2024-11-05"


@dataclass(frozen=True)
class ApiRoute:
    rpc_method: str
    http_method: str
    path: str  # relative to the API base path, e.g. "/v1/mail/{id}"
    capability: str

    @property
    def path_params(self) -> list[str]:
        return [
            segment[1:-1]
            for segment in self.path.split("/")
            if segment.startswith("{") and segment.endswith("}")
        ]

    @property
    def has_body(self) -> bool:
        return self.http_method in ("POST", "PUT", "PATCH")


API_ROUTES = (
    # Literal paths come before /v1/mail/{id} so they are matched first
    ApiRoute("mail.readMail", "GET", "/v1/mail", "readMail"),
    ApiRoute("mail.searchMail", "GET", "/v1/mail/search", "searchMail"),
    ApiRoute("mail.sendMail", "POST", "/v1/mail/send", "sendMail"),
    ApiRoute("mail.flagMail", "POST", "/v1/mail/flag", "flagMail"),
    ApiRoute("mail.getMailAttachments", "GET", "/v1/mail/attachments", "getMailAttachments"),
    ApiRoute("mail.readMailDetails", "GET", "/v1/mail/{id}", "readMailDetails"),
    ApiRoute("mail.markEmailRead", "PATCH", "/v1/mail/{id}/read", "markEmailRead"),
    ApiRoute("calendar.getEvents", "GET", "/v1/calendar", "getEvents"),
    ApiRoute("calendar.createEvent", "POST", "/v1/calendar/events", "createEvent"),
    ApiRoute("calendar.updateEvent", "PUT", "/v1/calendar/events/{id}", "updateEvent"),
    ApiRoute("calendar.getAvailability", "POST", "/v1/calendar/availability", "getAvailability"),
    ApiRoute("calendar.acceptEvent", "POST", "/v1/calendar/events/{id}/accept", "acceptEvent"),
    ApiRoute(
        "calendar.tentativelyAcceptEvent",
        "POST",
        "/v1/calendar/events/{id}/tentativelyAccept",
        "tentativelyAcceptEvent",
    ),
    ApiRoute("calendar.declineEvent", "POST", "/v1/calendar/events/{id}/decline", "declineEvent"),
    ApiRoute("calendar.cancelEvent", "POST", "/v1/calendar/events/{id}/cancel", "cancelEvent"),
    ApiRoute(
        "calendar.findMeetingTimes", "POST", "/v1/calendar/findMeetingTimes", "findMeetingTimes"
    ),
    ApiRoute("calendar.getRooms", "GET", "/v1/calendar/rooms", "getRooms"),
    ApiRoute("calendar.getCalendars", "GET", "/v1/calendar/calendars", "getCalendars"),
    ApiRoute(
        "calendar.addAttachment", "POST", "/v1/calendar/events/{id}/attachments", "addAttachment"
    ),
    ApiRoute(
        "calendar.removeAttachment",
        "DELETE",
        "/v1/calendar/events/{id}/attachments/{attachmentId}",
        "removeAttachment",
    ),
    ApiRoute("files.listFiles", "GET", "/v1/files", "listFiles"),
    ApiRoute("files.searchFiles", "GET", "/v1/files/search", "searchFiles"),
    ApiRoute("files.getFileMetadata", "GET", "/v1/files/metadata", "getFileMetadata"),
    ApiRoute("files.getFileContent", "GET", "/v1/files/content", "getFileContent"),
    ApiRoute("files.uploadFile", "POST", "/v1/files/upload", "uploadFile"),
    ApiRoute("files.createSharingLink", "POST", "/v1/files/share", "createSharingLink"),
    ApiRoute("files.getSharingLinks", "GET", "/v1/files/permissions", "getSharingLinks"),
    ApiRoute(
        "files.removeSharingPermission", "DELETE", "/v1/files/permissions", "removeSharingPermission"
    ),
    ApiRoute("files.downloadFile", "GET", "/v1/files/download", "downloadFile"),
    ApiRoute("files.setFileContent", "PUT", "/v1/files/content", "setFileContent"),
    ApiRoute("files.updateFileContent", "PATCH", "/v1/files/content", "updateFileContent"),
    ApiRoute("people.getRelevantPeople", "GET", "/v1/people", "getRelevantPeople"),
    ApiRoute("people.searchPeople", "GET", "/v1/people/search", "searchPeople"),
    ApiRoute("people.findPeople", "GET", "/v1/people/find", "findPeople"),
    ApiRoute("people.getPersonById", "GET", "/v1/people/{id}", "getPersonById"),
)

ROUTES_BY_RPC_METHOD = {route.rpc_method: route for route in API_ROUTES}
ROUTES_BY_CAPABILITY = {route.capability: route for route in API_ROUTES}


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: str
    description: str
    required: bool = False
    enum: Optional[tuple[str, ...]] = None

    def schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.type, "description": self.description}
        if self.type == "array":
            schema["items"] = {"type": "string"}
        if self.enum:
            schema["enum"] = list(self.enum)
        return schema


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameters: tuple[ToolParameter, ...] = field(default_factory=tuple)

    @property
    def route(self) -> ApiRoute:
        return ROUTES_BY_CAPABILITY[self.name]

    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {param.name: param.schema() for param in self.parameters},
            "required": [param.name for param in self.parameters if param.required],
        }

    def to_mcp(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema(),
        }


def _p(name: str, type_: str, description: str, required: bool = False, enum=None):
    return ToolParameter(name, type_, description, required, tuple(enum) if enum else None)


_ID = _p("id", "string", "Item ID from a previous listing", required=True)
_LIMIT = _p("limit", "number", "Maximum number of results")
_COMMENT = _p("comment", "string", "Optional message to the organizer")
_CONTENT = _p("content", "string", "New file content", required=True)
_ENCODING = _p("encoding", "string", "Encoding of content", enum=("text", "base64"))

TOOLS = (
    ToolDefinition(
        "readMail",
        "List recent emails in a mail folder, most recent first",
        (
            _p("folder", "string", "Folder name", enum=("inbox", "sent", "drafts", "deleted", "junk", "archive")),
            _LIMIT,
            _p("unreadOnly", "boolean", "Only return unread emails"),
            _p("startDate", "string", "Only emails received on or after this ISO date"),
            _p("endDate", "string", "Only emails received on or before this ISO date"),
        ),
    ),
    ToolDefinition(
        "searchMail",
        "Search emails by keyword",
        (_p("query", "string", "Search text", required=True), _LIMIT),
    ),
    ToolDefinition(
        "sendMail",
        "Send an email",
        (
            _p("to", "string", "Recipient address(es), comma-separated", required=True),
            _p("subject", "string", "Subject line", required=True),
            _p("body", "string", "Message body", required=True),
            _p("cc", "string", "CC recipient(s), comma-separated"),
            _p("bcc", "string", "BCC recipient(s), comma-separated"),
            _p("html", "boolean", "Send the body as HTML"),
            _p("importance", "string", "Importance", enum=("low", "normal", "high")),
        ),
    ),
    ToolDefinition(
        "flagMail",
        "Flag or unflag an email",
        (_ID, _p("flag", "boolean", "true to flag, false to clear the flag")),
    ),
    ToolDefinition("getMailAttachments", "List the attachments of an email", (_ID,)),
    ToolDefinition(
        "readMailDetails",
        "Get the full content of an email, with the body converted to Markdown",
        (
            _ID,
            _p("includeBody", "boolean", "Include the message body"),
            _p("bodyMaxLength", "number", "Truncate the body after this many characters"),
        ),
    ),
    ToolDefinition(
        "markEmailRead",
        "Mark an email as read or unread",
        (_ID, _p("isRead", "boolean", "true for read, false for unread")),
    ),
    ToolDefinition(
        "getEvents",
        "List calendar events in a date range",
        (
            _p("timeframe", "string", "Shortcut for a date range", enum=("today", "week", "month")),
            _p("start", "string", "Range start (YYYY-MM-DD or ISO timestamp)"),
            _p("end", "string", "Range end (YYYY-MM-DD or ISO timestamp)"),
            _LIMIT,
        ),
    ),
    ToolDefinition(
        "createEvent",
        "Create a calendar event and invite attendees",
        (
            _p("subject", "string", "Event title", required=True),
            _p("start", "string", "Start time (ISO, local to timeZone)", required=True),
            _p("end", "string", "End time (ISO, local to timeZone)", required=True),
            _p("timeZone", "string", "IANA or Windows time zone, default UTC"),
            _p("attendees", "array", "Attendee email addresses"),
            _p("location", "string", "Location"),
            _p("body", "string", "Description"),
            _p("isOnlineMeeting", "boolean", "Create a Teams meeting"),
        ),
    ),
    ToolDefinition(
        "updateEvent",
        "Change an existing calendar event",
        (
            _ID,
            _p("subject", "string", "Event title"),
            _p("start", "string", "Start time"),
            _p("end", "string", "End time"),
            _p("timeZone", "string", "Time zone of start and end"),
            _p("attendees", "array", "Attendee email addresses"),
            _p("location", "string", "Location"),
            _p("body", "string", "Description"),
        ),
    ),
    ToolDefinition(
        "getAvailability",
        "Get free/busy information for people",
        (
            _p("users", "array", "Email addresses to check", required=True),
            _p("start", "string", "Range start", required=True),
            _p("end", "string", "Range end", required=True),
            _p("timeZone", "string", "Time zone of start and end"),
        ),
    ),
    ToolDefinition("acceptEvent", "Accept a meeting invitation", (_ID, _COMMENT)),
    ToolDefinition(
        "tentativelyAcceptEvent", "Tentatively accept a meeting invitation", (_ID, _COMMENT)
    ),
    ToolDefinition("declineEvent", "Decline a meeting invitation", (_ID, _COMMENT)),
    ToolDefinition("cancelEvent", "Cancel a meeting you organize", (_ID, _COMMENT)),
    ToolDefinition(
        "findMeetingTimes",
        "Suggest meeting times when all attendees are free",
        (
            _p("attendees", "array", "Attendee email addresses", required=True),
            _p("durationMinutes", "number", "Meeting length in minutes"),
            _p("start", "string", "Search window start"),
            _p("end", "string", "Search window end"),
            _p("timeZone", "string", "Time zone of start and end"),
        ),
    ),
    ToolDefinition(
        "getRooms",
        "List meeting rooms, optionally filtered by building or capacity",
        (
            _p("building", "string", "Part of the building name"),
            _p("minCapacity", "number", "Minimum number of seats"),
            _LIMIT,
        ),
    ),
    ToolDefinition("getCalendars", "List the calendars the user can see"),
    ToolDefinition(
        "addAttachment",
        "Attach a file to a calendar event (max 10 MB)",
        (
            _ID,
            _p("name", "string", "File name", required=True),
            _p("contentBytes", "string", "Base64-encoded file content", required=True),
            _p("contentType", "string", "MIME type, default application/octet-stream"),
        ),
    ),
    ToolDefinition(
        "removeAttachment",
        "Remove an attachment from a calendar event",
        (_ID, _p("attachmentId", "string", "Attachment ID", required=True)),
    ),
    ToolDefinition(
        "listFiles",
        "List files and folders in OneDrive",
        (
            _p("path", "string", "Folder path, e.g. Documents/Projects"),
            _p("folderId", "string", "Folder ID (instead of path)"),
            _LIMIT,
        ),
    ),
    ToolDefinition(
        "searchFiles",
        "Search OneDrive files by name or content",
        (_p("query", "string", "Search text", required=True), _LIMIT),
    ),
    ToolDefinition("getFileMetadata", "Get metadata for a OneDrive item", (_ID,)),
    ToolDefinition(
        "getFileContent",
        "Read a OneDrive file; documents are converted to Markdown",
        (_ID, _p("maxLength", "number", "Truncate text after this many characters")),
    ),
    ToolDefinition(
        "uploadFile",
        "Upload a file to OneDrive",
        (
            _p("name", "string", "File name", required=True),
            _p("content", "string", "File content", required=True),
            _p("path", "string", "Target folder path"),
            _ENCODING,
        ),
    ),
    ToolDefinition(
        "createSharingLink",
        "Create a sharing link for a OneDrive item",
        (
            _ID,
            _p("type", "string", "Link type", enum=("view", "edit", "embed")),
            _p("scope", "string", "Who can use the link", enum=("anonymous", "organization")),
        ),
    ),
    ToolDefinition("getSharingLinks", "List the sharing links of a OneDrive item", (_ID,)),
    ToolDefinition(
        "removeSharingPermission",
        "Remove a sharing link or permission from a OneDrive item",
        (_ID, _p("permissionId", "string", "Permission ID from getSharingLinks", required=True)),
    ),
    ToolDefinition(
        "downloadFile", "Download a OneDrive file as base64 without conversion", (_ID,)
    ),
    ToolDefinition(
        "setFileContent", "Overwrite the content of a OneDrive file", (_ID, _CONTENT, _ENCODING)
    ),
    ToolDefinition(
        "updateFileContent",
        "Replace the content of an existing OneDrive file, optionally only if unchanged",
        (
            _ID,
            _CONTENT,
            _ENCODING,
            _p("eTag", "string", "Only write if the file still has this eTag"),
        ),
    ),
    ToolDefinition(
        "getRelevantPeople",
        "List the people the user works with most",
        (_LIMIT,),
    ),
    ToolDefinition(
        "searchPeople",
        "Search the user's relevant people",
        (_p("query", "string", "Name or email", required=True), _LIMIT),
    ),
    ToolDefinition(
        "findPeople",
        "Find a person by name or email, falling back to the directory",
        (
            _p("query", "string", "Name or email"),
            _p("name", "string", "Name"),
            _p("email", "string", "Email address"),
        ),
    ),
    ToolDefinition("getPersonById", "Get a directory user by ID", (_ID,)),
)

TOOLS_BY_NAME = {tool.name: tool for tool in TOOLS}


def list_tools() -> list[dict[str, Any]]:
    return [tool.to_mcp() for tool in TOOLS]


def manifest(protocol_version: Optional[str] = None) -> dict[str, Any]:
    """Static capability descriptor returned by ``getManifest``."""
    return {
        "protocolVersion": protocol_version or DEFAULT_PROTOCOL_VERSION,
        "capabilities": {"toolInvocation": True, "manifest": True},
        "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
        "tools": list_tools(),
    }
