"""OneDrive file capabilities."""

import base64
import logging
from typing import Any
from urllib.parse import quote

from ..errors import InvalidEntitiesError
from ..normalizers import normalize_file
from .base import BaseHandlerModule, as_int, convert_to_markdown, require, truncate

logger = logging.getLogger(__name__)

FILE_FIELDS = (
    "id,name,size,webUrl,parentReference,lastModifiedDateTime,createdDateTime,"
    "folder,file,eTag,@microsoft.graph.downloadUrl"
)

TEXT_MIME_TYPES = ("application/json", "application/xml", "application/javascript")

# Formats markitdown turns into readable text
CONVERTIBLE_MIME_TYPES = (
    "text/html",
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
)

SHARING_LINK_TYPES = ("view", "edit", "embed")
SHARING_SCOPES = ("anonymous", "organization")


def _children_path(entities: dict[str, Any]) -> str:
    if entities.get("folderId"):
        return f"/me/drive/items/{entities['folderId']}/children"
    path = str(entities.get("path") or "/").strip("/")
    if not path:
        return "/me/drive/root/children"
    return f"/me/drive/root:/{quote(path)}:/children"


def _content_bytes(entities: dict[str, Any]) -> bytes:
    """Decode the "content" entity according to "encoding" (text or base64)."""
    if entities.get("encoding") == "base64":
        try:
            return base64.b64decode(entities["content"], validate=True)
        except ValueError:
            raise InvalidEntitiesError("content is not valid base64")
    return str(entities["content"]).encode("utf-8")


class FilesModule(BaseHandlerModule):
    id = "files"
    name = "OneDrive Files"
    handlers = {
        "listFiles": "list_files",
        "searchFiles": "search_files",
        "getFileMetadata": "get_file_metadata",
        "getFileContent": "get_file_content",
        "uploadFile": "upload_file",
        "createSharingLink": "create_sharing_link",
        "getSharingLinks": "get_sharing_links",
        "removeSharingPermission": "remove_sharing_permission",
        "downloadFile": "download_file",
        "setFileContent": "set_file_content",
        "updateFileContent": "update_file_content",
    }

    async def list_files(self, entities, context) -> list[dict[str, Any]]:
        limit = as_int(entities.get("limit"), 50, "limit")
        items = await self.graph.collect(
            _children_path(entities),
            params={"$top": min(limit, 100), "$select": FILE_FIELDS},
            limit=limit,
        )
        result = [normalize_file(item) for item in items]
        logger.info(f"list_files: retrieved {len(result)} items")
        return result

    async def search_files(self, entities, context) -> list[dict[str, Any]]:
        require(entities, "query")
        limit = as_int(entities.get("limit"), 25, "limit")
        query = str(entities["query"]).replace("'", "''")
        items = await self.graph.collect(
            f"/me/drive/root/search(q='{query}')",
            params={"$top": min(limit, 100), "$select": FILE_FIELDS},
            limit=limit,
        )
        return [normalize_file(item) for item in items]

    async def get_file_metadata(self, entities, context) -> dict[str, Any]:
        require(entities, "id")
        item = await self.graph.request("GET", f"/me/drive/items/{entities['id']}")
        if not item:
            raise InvalidEntitiesError(
                f"File with ID {entities['id']} not found",
                context={"id": entities["id"]},
            )
        return normalize_file(item)

    async def _require_file(self, entities, context) -> dict[str, Any]:
        metadata = await self.get_file_metadata(entities, context)
        if metadata["type"] == "folder":
            raise InvalidEntitiesError(
                f"{metadata['name']} is a folder", context={"id": entities["id"]}
            )
        return metadata

    async def get_file_content(self, entities, context) -> dict[str, Any]:
        """Return file content as text where possible, base64 otherwise.

        Office documents, PDFs and HTML are converted to Markdown.
        """
        metadata = await self._require_file(entities, context)
        max_length = as_int(entities.get("maxLength"), 50000, "maxLength")
        raw = await self.graph.download_raw(f"/me/drive/items/{entities['id']}/content")
        mime_type = metadata.get("mimeType") or "application/octet-stream"

        result = {
            "id": metadata["id"],
            "name": metadata["name"],
            "mimeType": mime_type,
            "size": len(raw),
        }
        is_text = mime_type.startswith("text/") and mime_type != "text/html"
        if is_text or mime_type in TEXT_MIME_TYPES:
            result["encoding"] = "text"
            result["content"], result["truncated"] = truncate(
                raw.decode("utf-8", errors="replace"), max_length
            )
        elif mime_type in CONVERTIBLE_MIME_TYPES:
            result["encoding"] = "markdown"
            result["content"], result["truncated"] = truncate(
                convert_to_markdown(raw, mime_type), max_length
            )
        else:
            result["encoding"] = "base64"
            result["content"] = base64.b64encode(raw).decode("ascii")
            result["truncated"] = False
        return result

    async def upload_file(self, entities, context) -> dict[str, Any]:
        require(entities, "name", "content")
        name = str(entities["name"]).strip("/")
        data = _content_bytes(entities)

        folder = str(entities.get("path") or "").strip("/")
        target = f"{folder}/{name}" if folder else name
        item = await self.graph.request(
            "PUT", f"/me/drive/root:/{quote(target)}:/content", data=data
        )
        logger.info(f"upload_file: uploaded {len(data)} bytes to {target}")
        return normalize_file(item)

    async def create_sharing_link(self, entities, context) -> dict[str, Any]:
        require(entities, "id")
        link_type = entities.get("type") or "view"
        scope = entities.get("scope") or "organization"
        if link_type not in SHARING_LINK_TYPES:
            raise InvalidEntitiesError(
                f"type must be one of {', '.join(SHARING_LINK_TYPES)}",
                context={"type": link_type},
            )
        if scope not in SHARING_SCOPES:
            raise InvalidEntitiesError(
                f"scope must be one of {', '.join(SHARING_SCOPES)}",
                context={"scope": scope},
            )

        result = await self.graph.request(
            "POST",
            f"/me/drive/items/{entities['id']}/createLink",
            json={"type": link_type, "scope": scope},
        )
        link = (result or {}).get("link") or {}
        return {
            "id": entities["id"],
            "type": link.get("type", link_type),
            "scope": link.get("scope", scope),
            "webUrl": link.get("webUrl"),
        }

    async def get_sharing_links(self, entities, context) -> list[dict[str, Any]]:
        require(entities, "id")
        result = await self.graph.request(
            "GET", f"/me/drive/items/{entities['id']}/permissions"
        )
        return [
            {
                "id": permission.get("id"),
                "type": permission["link"].get("type"),
                "scope": permission["link"].get("scope"),
                "webUrl": permission["link"]["webUrl"],
                "roles": permission.get("roles", []),
            }
            for permission in (result or {}).get("value", [])
            if (permission.get("link") or {}).get("webUrl")
        ]

    async def remove_sharing_permission(self, entities, context) -> dict[str, Any]:
        require(entities, "id", "permissionId")
        await self.graph.request(
            "DELETE",
            f"/me/drive/items/{entities['id']}/permissions/{entities['permissionId']}",
        )
        logger.info(f"remove_sharing_permission: removed {entities['permissionId']}")
        return {"id": entities["id"], "permissionId": entities["permissionId"], "removed": True}

    async def download_file(self, entities, context) -> dict[str, Any]:
        """Raw file bytes, base64-encoded, without any conversion."""
        metadata = await self._require_file(entities, context)
        raw = await self.graph.download_raw(f"/me/drive/items/{entities['id']}/content")
        return {
            "id": metadata["id"],
            "name": metadata["name"],
            "mimeType": metadata.get("mimeType") or "application/octet-stream",
            "size": len(raw),
            "encoding": "base64",
            "content": base64.b64encode(raw).decode("ascii"),
        }

    async def set_file_content(self, entities, context) -> dict[str, Any]:
        require(entities, "id", "content")
        data = _content_bytes(entities)
        item = await self.graph.request(
            "PUT", f"/me/drive/items/{entities['id']}/content", data=data
        )
        logger.info(f"set_file_content: wrote {len(data)} bytes to {entities['id']}")
        return normalize_file(item)

    async def update_file_content(self, entities, context) -> dict[str, Any]:
        """Replace the content of an existing file.

        Folders are rejected. When ``eTag`` is given the write only succeeds
        if the file has not changed since (Graph answers 412 otherwise).
        """
        require(entities, "id", "content")
        data = _content_bytes(entities)
        await self._require_file(entities, context)
        headers = {"If-Match": str(entities["eTag"])} if entities.get("eTag") else None
        item = await self.graph.request(
            "PUT",
            f"/me/drive/items/{entities['id']}/content",
            data=data,
            headers=headers,
        )
        return normalize_file(item)
