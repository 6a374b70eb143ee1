"""Distribution workflow: e-mail last month's guides to every registered client.

For each client the unit of delivery is the whole batch of unsent guides in
the expected period folder: one message with every guide attached. Guides are
flagged processed only after the message went out, so a failed send is
retried in full on the next run and a successful one is never repeated.
"""

import html
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo

from guiaflow import DEFAULT_TIMEZONE
from guiaflow.errors import DistributionError
from mail import Attachment, Mailer
from registry import ClientRecord, ClientRegistry
from storage import FileInfo, StorageDriver, StorageError, PROCESSED_FLAG
from .folders import find_client_folder, find_exact_subfolder_by_name, parse_period
from .run_log import (
    RunLog, LogEntry,
    STATUS_SKIP, STATUS_ERROR,
    REASON_CLIENT_FOLDER_NOT_FOUND, REASON_MONTH_FOLDER_NOT_FOUND,
    REASON_NO_PDFS, REASON_ALREADY_PROCESSED, REASON_DOWNLOAD_FAILED,
    REASON_SEND_FAILED, REASON_DRY_RUN,
)

logger = logging.getLogger(__name__)

REASON_CLIENT_FAILED = "client_failed"

SUBJECT_TEMPLATE = "Guias de pagamento – {period}"

BODY_TEMPLATE = """<!doctype html>
<html><body style="font-family:Arial,sans-serif;color:#2C3E50">
<p>Olá, <b>{client}</b></p>
<p>Segue em anexo a(s) guia(s) referente(s) a <b>{period}</b>.</p>
<p>Atenciosamente,{signature}</p>
<hr style="border:none;border-top:1px solid #ECF0F1">
<small style="color:#7f8c8d">Mensagem automática. Em caso de dúvida, responda este e-mail.</small>
</body></html>
"""


@dataclass
class DistributionResult:
    """Counts for one distribution run."""
    period: str = ""
    clients: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0


def expected_period(now: Optional[datetime] = None, tz: str = DEFAULT_TIMEZONE) -> str:
    """The month before ``now`` in time zone ``tz``, as "MM-YYYY".

    A naive ``now`` is taken as wall-clock time in ``tz``.
    """
    zone = ZoneInfo(tz)
    if now is None:
        local = datetime.now(zone)
    elif now.tzinfo is None:
        local = now.replace(tzinfo=zone)
    else:
        local = now.astimezone(zone)

    if local.month == 1:
        return f"12-{local.year - 1}"
    return f"{local.month - 1:02d}-{local.year}"


def build_subject(period: str) -> str:
    return SUBJECT_TEMPLATE.format(period=period)


def build_html(client: str, period: str, signature: str = "") -> str:
    sign_off = f"<br>{html.escape(signature)}" if signature else ""
    return BODY_TEMPLATE.format(
        client=html.escape(client),
        period=html.escape(period),
        signature=sign_off,
    )


class _ClientRun:
    """Processes one client record; every outcome ends in exactly one ledger entry."""

    def __init__(self, driver: StorageDriver, mailer: Mailer, clients_root_id: str,
                 period: str, run_log: Optional[RunLog], force_send: bool,
                 dry_run: bool, signature: str) -> None:
        self.driver = driver
        self.mailer = mailer
        self.clients_root_id = clients_root_id
        self.period = period
        self.run_log = run_log
        self.force_send = force_send
        self.dry_run = dry_run
        self.signature = signature

    def record(self, client: ClientRecord, status: str, reason: str,
               period: Optional[str] = None, subject: Optional[str] = None) -> None:
        if self.run_log is None:
            return
        self.run_log.append_entry(LogEntry(
            type="email",
            status=status,
            reason=reason,
            client=client.name,
            recipient=client.email,
            period=period or self.period,
            subject=subject,
        ))

    def process(self, client: ClientRecord) -> str:
        """Returns "sent", "skipped" or "failed"."""
        client_folder = find_client_folder(self.driver, self.clients_root_id, client.name)
        if client_folder is None:
            logger.error("Client folder not found for '%s'", client.name)
            self.record(client, STATUS_ERROR, REASON_CLIENT_FOLDER_NOT_FOUND)
            return "failed"

        month_folder = find_exact_subfolder_by_name(self.driver, client_folder.id, self.period)
        if month_folder is None:
            logger.warning("No %s folder for '%s'; nothing to send", self.period, client.name)
            self.record(client, STATUS_SKIP, REASON_MONTH_FOLDER_NOT_FOUND)
            return "skipped"

        period = month_folder.name
        pdfs = [f for f in self.driver.list_files(month_folder.id) if f.is_pdf]
        if not pdfs:
            logger.warning("No PDFs in %s/%s", client.name, period)
            self.record(client, STATUS_SKIP, REASON_NO_PDFS, period=period)
            return "skipped"

        to_send = pdfs if self.force_send else [f for f in pdfs if not f.has_flag(PROCESSED_FLAG)]
        if not to_send:
            logger.info("All PDFs in %s/%s were already sent", client.name, period)
            self.record(client, STATUS_SKIP, REASON_ALREADY_PROCESSED, period=period)
            return "skipped"

        scratch_dir = tempfile.mkdtemp(prefix="guiaflow-send-")
        try:
            return self._send_batch(client, period, to_send, scratch_dir)
        finally:
            try:
                shutil.rmtree(scratch_dir)
            except OSError as e:
                logger.warning("Failed to remove scratch directory %s: %s", scratch_dir, e)

    def _send_batch(self, client: ClientRecord, period: str, files: List[FileInfo],
                    scratch_dir: str) -> str:
        attachments = []
        for i, file_info in enumerate(files):
            local_path = os.path.join(scratch_dir, f"{i:03d}.pdf")
            try:
                self.driver.download(file_info.id, local_path)
                attachments.append(Attachment.from_path(local_path, filename=file_info.name))
            except (StorageError, OSError) as e:
                logger.error("Download of %s (%s) for '%s' failed: %s; nothing sent",
                             file_info.name, file_info.id, client.name, e)
                self.record(client, STATUS_ERROR, REASON_DOWNLOAD_FAILED, period=period)
                return "failed"

        subject = build_subject(period)
        if self.dry_run:
            logger.info("[dry run] Would send %d guides to %s (%s)",
                        len(attachments), client.email, client.name)
            self.record(client, STATUS_SKIP, REASON_DRY_RUN, period=period, subject=subject)
            return "skipped"

        body = build_html(client.name, period, self.signature)
        try:
            self.mailer.send(client.email, subject, body, attachments)
        except Exception as e:
            logger.error("Send to %s (%s) failed, nothing marked processed: %s",
                         client.email, client.name, e)
            self.record(client, STATUS_ERROR, REASON_SEND_FAILED, period=period, subject=subject)
            return "failed"

        if self.run_log is not None:
            self.run_log.append_send(client.name, client.email, period, subject)

        for file_info in files:
            try:
                self.driver.mark_flag(file_info.id, PROCESSED_FLAG)
            except Exception as e:
                logger.warning("Failed to flag %s (%s) as processed: %s",
                               file_info.name, file_info.id, e)
        return "sent"


def run_distribution(driver: StorageDriver, registry: ClientRegistry, mailer: Mailer,
                     clients_root_id: str, run_log: Optional[RunLog] = None,
                     force_send: bool = False, dry_run: bool = False,
                     target_month: Optional[str] = None, now: Optional[datetime] = None,
                     timezone: str = DEFAULT_TIMEZONE,
                     signature: str = "") -> DistributionResult:
    """Send every client the guides of the expected period.

    Raises:
        DistributionError: If the clients root is unreachable or
            ``target_month`` is not a "MM-YYYY" period
        RegistryError: If the client list can't be read
    """
    try:
        root = driver.get_folder(clients_root_id)
    except StorageError as e:
        raise DistributionError(f"Clients root folder {clients_root_id} is not accessible: {e}")
    logger.info("Clients root '%s' OK", root.name)

    if target_month:
        if parse_period(target_month) is None:
            raise DistributionError(f"Invalid target month '{target_month}', expected MM-YYYY")
        period = target_month.strip()
    else:
        period = expected_period(now, timezone)
    logger.info("Expected period folder: %s", period)

    clients = registry.list_clients()
    logger.info("%d clients in %s", len(clients), registry.display_name)

    result = DistributionResult(period=period)
    client_run = _ClientRun(driver, mailer, clients_root_id, period, run_log,
                            force_send, dry_run, signature)

    for client in clients:
        if not client.name or not client.email:
            logger.warning("Skipping registry row with empty name or e-mail: %r", client)
            continue
        result.clients += 1
        try:
            outcome = client_run.process(client)
        except Exception as e:
            logger.error("Error processing client '%s': %s", client.name, e)
            client_run.record(client, STATUS_ERROR, REASON_CLIENT_FAILED)
            outcome = "failed"

        if outcome == "sent":
            result.sent += 1
        elif outcome == "skipped":
            result.skipped += 1
        else:
            result.failed += 1

    logger.info("Distribution finished for %s: %d sent, %d skipped, %d failed",
                period, result.sent, result.skipped, result.failed)
    return result
