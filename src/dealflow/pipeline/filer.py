"""DocumentFiler -- mirrors a saved memo into the owner's Google Drive.

Filing is best-effort. It is skipped when the owner has no active Drive
integration, and any failure is recorded on the integration (status
``error`` with the reason) instead of failing the job. An expired access
token gets exactly one refresh-token exchange and one retry.
"""

from __future__ import annotations

import html
import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from src.dealflow.integrations.drive import DriveAuthError, DriveFile
from src.dealflow.integrations.schemas import IntegrationProvider, IntegrationStatus

if TYPE_CHECKING:
    from src.dealflow.crm.repository import CRMRepository
    from src.dealflow.crm.schemas import Memo
    from src.dealflow.integrations.drive import DriveClient
    from src.dealflow.integrations.repository import IntegrationRepository

logger = structlog.get_logger(__name__)

_BOLD = re.compile(r"\*\*(.+?)\*\*")
_ITALIC = re.compile(r"\*(.+?)\*")
_UNDERSCORE_ITALIC = re.compile(r"(?<!\w)_(.+?)_(?!\w)")

_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 800px; }
    h1 { color: #1a1a1a; border-bottom: 2px solid #4f46e5; padding-bottom: 10px; }
    h2 { color: #4f46e5; margin-top: 24px; }
    h3 { color: #374151; }
    .header-meta { background: #f3f4f6; padding: 12px 16px; border-radius: 6px; }
    .summary-box { background: #eef2ff; border-left: 4px solid #4f46e5; padding: 12px 16px; }
"""


class FilingResult(BaseModel):
    filed: bool = False
    file_id: str | None = None
    url: str | None = None
    error: str | None = None


# ── HTML Rendering ───────────────────────────────────────────────────────────


def format_inline(text: str) -> str:
    """Escape ``text`` then apply ``**bold**`` and ``*italic*`` markup."""
    escaped = html.escape(text, quote=True)
    escaped = _BOLD.sub(r"<strong>\1</strong>", escaped)
    escaped = _ITALIC.sub(r"<em>\1</em>", escaped)
    return _UNDERSCORE_ITALIC.sub(r"<em>\1</em>", escaped)


def markdown_to_html(markdown: str) -> str:
    """Convert the memo's markdown subset (headings, bullets, emphasis) to HTML."""
    parts: list[str] = []
    paragraph: list[str] = []
    in_list = False

    def flush_paragraph() -> None:
        if paragraph:
            parts.append(f"<p>{' '.join(paragraph)}</p>")
            paragraph.clear()

    def close_list() -> None:
        nonlocal in_list
        if in_list:
            parts.append("</ul>")
            in_list = False

    for raw_line in markdown.split("\n"):
        line = raw_line.strip()
        if not line:
            flush_paragraph()
            close_list()
            continue
        if line == "---":
            flush_paragraph()
            close_list()
            parts.append("<hr>")
            continue
        if line.startswith("### "):
            flush_paragraph()
            close_list()
            parts.append(f"<h3>{format_inline(line[4:])}</h3>")
            continue
        if line.startswith("## "):
            flush_paragraph()
            close_list()
            parts.append(f"<h2>{format_inline(line[3:])}</h2>")
            continue
        if line.startswith(("- ", "* ")):
            flush_paragraph()
            if not in_list:
                parts.append("<ul>")
                in_list = True
            parts.append(f"  <li>{format_inline(line[2:])}</li>")
            continue

        close_list()
        paragraph.append(format_inline(line))

    flush_paragraph()
    close_list()
    return "\n".join(parts)


def render_memo_html(
    memo: Memo,
    company_name: str | None = None,
    category: str | None = None,
    generated_at: datetime | None = None,
) -> str:
    """Render a complete HTML document for a memo."""
    generated_at = generated_at or datetime.now(timezone.utc)
    meeting_date = (
        memo.meeting_date.strftime("%A, %B %d, %Y") if memo.meeting_date else "Date not specified"
    )
    meta = []
    if company_name:
        meta.append(f"<p><strong>Company:</strong> {html.escape(company_name)}</p>")
    meta.append(f"<p><strong>Meeting Date:</strong> {meeting_date}</p>")
    if category:
        display = " ".join(word.capitalize() for word in category.split("-"))
        meta.append(f"<p><strong>Meeting Type:</strong> {html.escape(display)}</p>")
    meta.append(f"<p><strong>Generated:</strong> {generated_at.strftime('%B %d, %Y')}</p>")

    summary = (
        '<div class="summary-box"><p><strong>Executive Summary:</strong> '
        f"{html.escape(memo.summary)}</p></div>"
        if memo.summary
        else ""
    )

    return (
        "<!DOCTYPE html>\n<html>\n<head>\n<meta charset=\"utf-8\">\n"
        f"<style>{_STYLE}</style>\n</head>\n<body>\n"
        f"<h1>{html.escape(memo.title)}</h1>\n"
        f"<div class=\"header-meta\">\n{chr(10).join(meta)}\n</div>\n"
        f"{summary}\n"
        f"<div class=\"content\">\n{markdown_to_html(memo.content)}\n</div>\n"
        "</body>\n</html>"
    )


# ── Filer ────────────────────────────────────────────────────────────────────


class DocumentFiler:
    """Creates or updates the Google Doc for a memo.

    Args:
        drive: DriveClient for API calls.
        integrations: IntegrationRepository for credentials and status.
        crm: CRMRepository to record the document on the memo.
        folder_name: Drive folder that holds memos.
    """

    def __init__(
        self,
        drive: DriveClient,
        integrations: IntegrationRepository,
        crm: CRMRepository,
        folder_name: str = "Deal Flow Memos",
    ) -> None:
        self._drive = drive
        self._integrations = integrations
        self._crm = crm
        self._folder_name = folder_name

    async def _write(
        self, access_token: str, folder_id: str | None, memo: Memo, document: str
    ) -> tuple[DriveFile, str]:
        folder = await self._drive.ensure_folder(access_token, self._folder_name, folder_id)
        if memo.drive_file_id:
            try:
                return (
                    await self._drive.update_document(
                        access_token, memo.drive_file_id, memo.title, document
                    ),
                    folder,
                )
            except DriveAuthError:
                raise
            except Exception as exc:
                logger.info(
                    "drive_update_failed_creating_new",
                    memo_id=memo.id,
                    file_id=memo.drive_file_id,
                    error=str(exc),
                )
        return await self._drive.create_document(access_token, folder, memo.title, document), folder

    async def _mark_error(self, owner_id: str, reason: str) -> None:
        try:
            await self._integrations.set_status(
                owner_id, IntegrationProvider.GOOGLE_DRIVE, IntegrationStatus.ERROR, reason
            )
        except Exception:
            logger.warning("drive_status_update_failed", owner_id=owner_id, exc_info=True)

    async def file(
        self,
        owner_id: str,
        memo: Memo,
        company_name: str | None = None,
        category: str | None = None,
    ) -> FilingResult:
        """File the memo; never raises."""
        try:
            integration = await self._integrations.get_integration(
                owner_id, IntegrationProvider.GOOGLE_DRIVE
            )
        except Exception as exc:
            logger.warning("drive_integration_lookup_failed", owner_id=owner_id, error=str(exc))
            return FilingResult(error=str(exc))

        if integration is None or integration.status is not IntegrationStatus.ACTIVE:
            return FilingResult()

        credentials = integration.credentials
        access_token = credentials.get("access_token")
        refresh_token = credentials.get("refresh_token")
        folder_id = credentials.get("drive_folder_id")
        if not access_token and not refresh_token:
            return FilingResult()

        document = render_memo_html(memo, company_name, category)

        try:
            try:
                if not access_token:
                    raise DriveAuthError("No access token stored")
                written, folder = await self._write(access_token, folder_id, memo, document)
            except DriveAuthError as auth_exc:
                if not refresh_token:
                    raise
                logger.info("drive_token_expired_refreshing", owner_id=owner_id, error=str(auth_exc))
                access_token = await self._drive.refresh_access_token(refresh_token)
                await self._integrations.update_credentials(
                    owner_id, IntegrationProvider.GOOGLE_DRIVE, {"access_token": access_token}
                )
                written, folder = await self._write(access_token, folder_id, memo, document)
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            logger.warning(
                "drive_filing_failed",
                owner_id=owner_id,
                memo_id=memo.id,
                error=reason,
                error_type=type(exc).__name__,
            )
            await self._mark_error(owner_id, reason)
            return FilingResult(error=reason)

        try:
            await self._crm.set_memo_document(owner_id, memo.id, written.id, written.web_view_link)
            if folder != folder_id:
                await self._integrations.update_credentials(
                    owner_id, IntegrationProvider.GOOGLE_DRIVE, {"drive_folder_id": folder}
                )
            await self._integrations.set_status(
                owner_id, IntegrationProvider.GOOGLE_DRIVE, IntegrationStatus.ACTIVE
            )
        except Exception:
            logger.warning("drive_filing_bookkeeping_failed", memo_id=memo.id, exc_info=True)

        logger.info("memo_filed", memo_id=memo.id, file_id=written.id)
        return FilingResult(filed=True, file_id=written.id, url=written.web_view_link)
