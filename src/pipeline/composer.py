"""Outreach email composition: copywriter service first, template fallback."""

from __future__ import annotations

from dataclasses import dataclass
import html
from typing import Any, Dict, Optional

from src.core.logger import get_logger
from src.integrations.copywriter.client import CopywriterClient, CopywriterError, OutreachCopy
from src.pipeline.models import ArtifactRecord


logger = get_logger("loomreach.pipeline.composer")


@dataclass(frozen=True)
class SenderIdentity:
    name: str = ""
    title: str = ""
    company: str = ""
    email: str = ""
    work_summary: str = ""
    cta_link: str = ""


def build_copywriter_payload(sender: SenderIdentity, artifact: ArtifactRecord) -> Dict[str, Any]:
    row = artifact.row
    return {
        "my_company": sender.company,
        "my_designation": sender.title,
        "my_name": sender.name,
        "my_mail": sender.email,
        "my_work": sender.work_summary,
        "my_cta_link": sender.cta_link,
        "client_name": row.recipient_name,
        "client_company": row.recipient_company,
        "client_designation": row.recipient_title,
        "client_mail": row.recipient_email,
        "client_website": row.target_url,
        "video_path": artifact.remote_url,
    }


def render_template_copy(sender: SenderIdentity, artifact: ArtifactRecord) -> OutreachCopy:
    row = artifact.row
    greeting_name = row.recipient_name or "there"
    company = row.recipient_company or row.target_url
    subject = f"A quick video walkthrough of {company}"

    paragraphs = [
        f"Hi {html.escape(greeting_name)},",
        (
            f"I recorded a short video looking at {html.escape(row.target_url)} "
            f'and shared a few ideas. You can watch it here: <a href="{html.escape(artifact.remote_url)}">'
            "your personal video</a>."
        ),
    ]
    if sender.work_summary:
        paragraphs.append(html.escape(sender.work_summary))
    if sender.cta_link:
        paragraphs.append(f'If it looks useful, <a href="{html.escape(sender.cta_link)}">let\'s talk</a>.')

    signature = "<br>".join(
        html.escape(part) for part in (sender.name, sender.title, sender.company) if part
    )
    if signature:
        paragraphs.append(f"Best regards,<br>{signature}")

    html_body = "".join(f"<p>{paragraph}</p>" for paragraph in paragraphs)
    return OutreachCopy(subject=subject, html_body=html_body)


class OutreachComposer:
    def __init__(self, copywriter: Optional[CopywriterClient] = None) -> None:
        self._copywriter = copywriter

    def compose(self, sender: SenderIdentity, artifact: ArtifactRecord) -> OutreachCopy:
        if self._copywriter is not None and self._copywriter.configured:
            try:
                return self._copywriter.generate(build_copywriter_payload(sender, artifact))
            except CopywriterError as exc:
                logger.warning(
                    "outreach_copywriter_fallback",
                    row_index=artifact.row.index,
                    error=str(exc),
                )
        return render_template_copy(sender, artifact)
