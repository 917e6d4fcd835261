"""Outlook mail capabilities."""

import logging
from typing import Any
from urllib.parse import quote

from ..errors import InvalidEntitiesError
from ..normalizers import normalize_email
from .base import (
    BaseHandlerModule,
    as_bool,
    as_int,
    as_list,
    convert_to_markdown,
    recipients,
    require,
    truncate,
)

logger = logging.getLogger(__name__)

FOLDERS = {
    k.casefold(): v
    for k, v in {
        "inbox": "inbox",
        "sent": "sentitems",
        "drafts": "drafts",
        "deleted": "deleteditems",
        "junk": "junkemail",
        "archive": "archive",
    }.items()
}

LIST_FIELDS = (
    "id,subject,from,toRecipients,receivedDateTime,sentDateTime,bodyPreview,"
    "isRead,importance,hasAttachments,conversationId"
)

# Graph bookkeeping fields that only cost tokens
NOISE_FIELDS = (
    "@odata.context",
    "@odata.etag",
    "parentFolderId",
    "changeKey",
    "internetMessageId",
    "isDeliveryReceiptRequested",
    "isReadReceiptRequested",
)

MAX_LIMIT = 100


def conversation_url(conversation_id: str) -> str:
    return f"https://outlook.office.com/mail/deeplink/readconv/{quote(conversation_id)}"


class MailModule(BaseHandlerModule):
    id = "mail"
    name = "Outlook Mail"
    handlers = {
        "readMail": "read_mail",
        "searchMail": "search_mail",
        "sendMail": "send_mail",
        "flagMail": "flag_mail",
        "getMailAttachments": "get_mail_attachments",
        "readMailDetails": "read_mail_details",
        "markEmailRead": "mark_email_read",
    }

    async def read_mail(self, entities, context) -> list[dict[str, Any]]:
        folder = str(entities.get("folder") or "inbox")
        folder_path = FOLDERS.get(folder.casefold(), folder)
        limit = min(as_int(entities.get("limit"), 10, "limit"), MAX_LIMIT)

        params = {
            "$top": limit,
            "$select": LIST_FIELDS,
            "$orderby": "receivedDateTime desc",
        }
        filter_conditions = []
        if as_bool(entities.get("unreadOnly")):
            filter_conditions.append("isRead eq false")
        if entities.get("startDate"):
            filter_conditions.append(f"receivedDateTime ge {entities['startDate']}")
        if entities.get("endDate"):
            filter_conditions.append(f"receivedDateTime le {entities['endDate']}")
        if filter_conditions:
            params["$filter"] = " and ".join(filter_conditions)

        messages = await self.graph.collect(
            f"/me/mailFolders/{folder_path}/messages", params=params, limit=limit
        )
        emails = [normalize_email(message) for message in messages]
        logger.info(f"read_mail: retrieved {len(emails)} emails from folder {folder}")
        return emails

    async def search_mail(self, entities, context) -> list[dict[str, Any]]:
        require(entities, "query")
        limit = min(as_int(entities.get("limit"), 25, "limit"), MAX_LIMIT)
        query = str(entities["query"]).replace('"', "")
        params = {"$search": f'"{query}"', "$top": limit, "$select": LIST_FIELDS}

        messages = await self.graph.collect("/me/messages", params=params, limit=limit)
        emails = [normalize_email(message) for message in messages]
        logger.info(f"search_mail: {len(emails)} emails match the query")
        return emails

    async def send_mail(self, entities, context) -> dict[str, Any]:
        require(entities, "to", "subject", "body")
        to = as_list(entities["to"])
        cc = as_list(entities.get("cc"))
        bcc = as_list(entities.get("bcc"))
        content_type = "HTML" if as_bool(entities.get("html")) else "Text"

        message = {
            "subject": entities["subject"],
            "body": {"contentType": content_type, "content": entities["body"]},
            "toRecipients": recipients(to),
        }
        if cc:
            message["ccRecipients"] = recipients(cc)
        if bcc:
            message["bccRecipients"] = recipients(bcc)
        if entities.get("importance"):
            message["importance"] = entities["importance"]

        attachments = entities.get("attachments") or []
        if attachments:
            message["attachments"] = [
                {
                    "@odata.type": "#microsoft.graph.fileAttachment",
                    "name": attachment.get("name"),
                    "contentType": attachment.get("contentType")
                    or "application/octet-stream",
                    "contentBytes": attachment.get("contentBytes"),
                }
                for attachment in attachments
            ]

        await self.graph.request(
            "POST",
            "/me/sendMail",
            json={
                "message": message,
                "saveToSentItems": as_bool(entities.get("saveToSentItems"), True),
            },
        )
        logger.info(f"send_mail: message sent to {len(to)} recipient(s)")
        return {"sent": True, "recipients": len(to) + len(cc) + len(bcc)}

    async def flag_mail(self, entities, context) -> dict[str, Any]:
        require(entities, "id")
        flagged = as_bool(entities.get("flag"), True)
        await self.graph.request(
            "PATCH",
            f"/me/messages/{entities['id']}",
            json={"flag": {"flagStatus": "flagged" if flagged else "notFlagged"}},
        )
        return {"id": entities["id"], "flagged": flagged}

    async def get_mail_attachments(self, entities, context) -> list[dict[str, Any]]:
        require(entities, "id")
        attachments = await self.graph.collect(
            f"/me/messages/{entities['id']}/attachments",
            params={"$select": "id,name,size,contentType,isInline"},
        )
        return [
            {key: value for key, value in attachment.items() if key != "contentBytes"}
            for attachment in attachments
        ]

    async def read_mail_details(self, entities, context) -> dict[str, Any]:
        require(entities, "id")
        include_body = as_bool(entities.get("includeBody"), True)
        body_max_length = as_int(entities.get("bodyMaxLength"), 5000, "bodyMaxLength")

        params = {"$expand": "attachments($select=id,name,size,contentType)"}
        result = await self.graph.request(
            "GET", f"/me/messages/{entities['id']}", params=params
        )
        if not result:
            raise InvalidEntitiesError(
                f"Email with ID {entities['id']} not found",
                context={"id": entities["id"]},
            )

        body = result.get("body") or {}
        if include_body and "content" in body:
            if (body.get("contentType") or "").lower() == "html":
                body["content"] = convert_to_markdown(body["content"])
                body["contentType"] = "text/markdown"

            total_length = len(body["content"])
            body["content"], truncated = truncate(body["content"], body_max_length)
            if truncated:
                body["truncated"] = True
                body["total_length"] = total_length
                logger.info(
                    f"read_mail_details: body truncated from {total_length} "
                    f"to {body_max_length} characters"
                )
        elif not include_body:
            result.pop("body", None)

        for key in NOISE_FIELDS:
            result.pop(key, None)
        if result.get("conversationId"):
            result["conversation_url"] = conversation_url(result["conversationId"])
        for attachment in result.get("attachments") or []:
            attachment.pop("contentBytes", None)

        return result

    async def mark_email_read(self, entities, context) -> dict[str, Any]:
        require(entities, "id")
        is_read = as_bool(entities.get("isRead"), True)
        await self.graph.request(
            "PATCH", f"/me/messages/{entities['id']}", json={"isRead": is_read}
        )
        return {"id": entities["id"], "isRead": is_read}
