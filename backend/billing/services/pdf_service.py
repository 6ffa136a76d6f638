"""PDF rendering for invoices through a headless Chromium."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal
from html import escape
from string import Template
from typing import TYPE_CHECKING, Any

from playwright.async_api import async_playwright

from billing.core.config import settings
from billing.core.errors import DocumentRenderError
from billing.services.amounts import format_minor_units

if TYPE_CHECKING:
    from billing.models.invoice import Invoice
    from billing.models.organization import Organization

logger = logging.getLogger(__name__)

Launcher = Callable[[], Awaitable[tuple[Any, Any]]]

_INVOICE_TEMPLATE = Template("""\
<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<style>
  body { font-family: Helvetica, Arial, sans-serif; font-size: 12px; color: #333; margin: 40px; }
  h1 { font-size: 24px; margin-bottom: 4px; }
  .header { display: flex; justify-content: space-between; margin-bottom: 30px; }
  .header-left, .header-right { width: 48%; }
  .meta { margin-bottom: 20px; }
  .meta td { padding: 2px 8px 2px 0; }
  table.items { width: 100%; border-collapse: collapse; margin-bottom: 20px; }
  table.items th { text-align: left; border-bottom: 2px solid #333; padding: 6px 8px; }
  table.items td { padding: 6px 8px; border-bottom: 1px solid #ddd; }
  table.items .right { text-align: right; }
  .totals { width: 300px; margin-left: auto; }
  .totals td { padding: 4px 8px; }
  .totals .label { text-align: right; }
  .totals .total-row { font-weight: bold; border-top: 2px solid #333; }
  .status { display: inline-block; padding: 4px 12px; border-radius: 4px; font-weight: bold;
             text-transform: uppercase; font-size: 11px; }
  .status-sent, .status-overdue { background: #e8f0fe; color: #1a73e8; }
  .status-paid { background: #e6f4ea; color: #137333; }
  .status-draft { background: #fce8e6; color: #c5221f; }
  .status-cancelled { background: #f1f3f4; color: #5f6368; }
  .payment { margin-top: 30px; padding: 12px; background: #f8fafc; border-radius: 4px; }
  .notes { margin-top: 20px; color: #555; }
</style>
</head>
<body>
<div class="header">
  <div class="header-left">
    ${org_logo}
    <h1>${org_name}</h1>
    <p>${org_details}</p>
  </div>
  <div class="header-right" style="text-align: right;">
    <h1>INVOICE</h1>
    <span class="status status-${status_class}">${status}</span>
  </div>
</div>
<table class="meta">
  <tr><td><strong>Invoice #:</strong></td><td>${invoice_number}</td></tr>
  <tr><td><strong>Issued:</strong></td><td>${issued_at}</td></tr>
  <tr><td><strong>Due:</strong></td><td>${due_date}</td></tr>
</table>
<table class="meta">
  <tr><td><strong>Bill To:</strong></td></tr>
  <tr><td>${client_details}</td></tr>
</table>
<table class="items">
  <thead>
    <tr>
      <th>Description</th>
      <th class="right">Qty</th>
      <th class="right">Rate</th>
      <th class="right">Amount</th>
    </tr>
  </thead>
  <tbody>
    ${item_rows}
  </tbody>
</table>
<table class="totals">
  <tr><td class="label">Subtotal:</td><td class="right">${subtotal}</td></tr>
  ${tax_row}
  <tr class="total-row"><td class="label">Total:</td><td class="right">${total}</td></tr>
</table>
${payment_instructions}
${notes}
</body>
</html>
""")

_ITEM_ROW_TEMPLATE = Template(
    '<tr><td>${description}</td><td class="right">${quantity}</td>'
    '<td class="right">${rate}</td><td class="right">${amount}</td></tr>'
)

_PAYMENT_FIELDS = (
    ("bank_name", "Bank"),
    ("account_name", "Account Name"),
    ("account_number", "Account Number"),
    ("iban", "IBAN"),
    ("swift", "SWIFT"),
    ("mpesa_paybill", "M-Pesa Paybill"),
    ("mpesa_till", "M-Pesa Till"),
)


@dataclass
class RenderedDocument:
    content: bytes
    path: str
    url: str


def _format_date(dt: object) -> str:
    """Format a datetime to YYYY-MM-DD, or return empty string if None."""
    if dt is None:
        return ""
    return str(dt)[:10]


def _lines(*values: object) -> str:
    return "<br>".join(escape(str(v)) for v in values if v)


def _payment_instructions(organization: Organization | None) -> str:
    details = (organization.payment_details if organization else None) or {}
    if not isinstance(details, dict):
        return ""
    rows = [
        f"<tr><td><strong>{label}:</strong></td><td>{escape(str(details[key]))}</td></tr>"
        for key, label in _PAYMENT_FIELDS
        if details.get(key)
    ]
    if not rows:
        return ""
    return (
        '<div class="payment"><strong>Payment Instructions</strong>'
        f'<table class="meta">{"".join(rows)}</table></div>'
    )


def build_invoice_html(invoice: Invoice, organization: Organization | None = None) -> str:
    """Render the invoice document as HTML."""
    currency = str(invoice.currency or "")
    item_rows = "\n    ".join(
        _ITEM_ROW_TEMPLATE.substitute(
            description=escape(str(item.get("description", ""))),
            quantity=item.get("quantity", 0),
            rate=format_minor_units(item.get("rate"), currency),
            amount=format_minor_units(item.get("amount"), currency),
        )
        for item in (invoice.line_items or [])
    )

    tax_rate = Decimal(str(invoice.tax_rate or 0))
    tax_row = ""
    if tax_rate > 0:
        tax_row = (
            f'<tr><td class="label">Tax ({tax_rate.normalize():f}%):</td>'
            f'<td class="right">{format_minor_units(invoice.tax_amount, currency)}</td></tr>'  # type: ignore[arg-type]
        )

    org_logo = ""
    if organization is not None and organization.logo_url:
        org_logo = f'<img src="{escape(str(organization.logo_url))}" style="max-height: 60px;">'

    notes = ""
    if invoice.notes:
        notes = f'<div class="notes"><strong>Notes</strong><p>{escape(str(invoice.notes))}</p></div>'

    status = str(invoice.status or "")
    return _INVOICE_TEMPLATE.substitute(
        org_logo=org_logo,
        org_name=escape(str(organization.name)) if organization is not None else "",
        org_details=_lines(
            *(
                (organization.address, organization.email, organization.phone, organization.tax_id)
                if organization is not None
                else ()
            )
        ),
        invoice_number=escape(str(invoice.invoice_number or "")),
        status=escape(status),
        status_class=escape(status.lower()),
        issued_at=_format_date(invoice.sent_at or invoice.created_at),
        due_date=_format_date(invoice.due_date),
        client_details=_lines(
            invoice.client_name, invoice.client_email, invoice.client_phone, invoice.client_address
        ),
        item_rows=item_rows,
        subtotal=format_minor_units(invoice.subtotal, currency),  # type: ignore[arg-type]
        tax_row=tax_row,
        total=format_minor_units(invoice.total, currency),  # type: ignore[arg-type]
        payment_instructions=_payment_instructions(organization),
        notes=notes,
    )


async def _launch_chromium() -> tuple[Any, Any]:
    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.launch(
            headless=True,
            args=["--no-sandbox", "--disable-dev-shm-usage"],
        )
    except Exception:
        await playwright.stop()
        raise
    return playwright, browser


class BrowserPool:
    """Owns one lazily launched Chromium process.

    ``acquire`` relaunches the browser when it is missing or disconnected;
    launching and teardown are serialized by a lock.
    """

    def __init__(self, launcher: Launcher | None = None):
        self._launcher = launcher or _launch_chromium
        self._lock = asyncio.Lock()
        self._playwright: Any = None
        self._browser: Any = None

    @property
    def browser(self) -> Any:
        return self._browser

    async def acquire(self) -> Any:
        async with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            if self._browser is not None:
                logger.warning("Browser disconnected, relaunching")
            await self._reset()
            self._playwright, self._browser = await self._launcher()
            self._browser.on("disconnected", self._on_disconnected)
            logger.info("Launched headless browser for PDF rendering")
            return self._browser

    def _on_disconnected(self, browser: Any) -> None:
        if browser is self._browser:
            logger.warning("Browser process exited")
            self._browser = None

    async def invalidate(self) -> None:
        """Force-close the current browser so the next acquire relaunches."""
        async with self._lock:
            await self._reset()

    async def close(self) -> None:
        await self.invalidate()
        logger.info("Browser pool closed")

    async def _reset(self) -> None:
        browser, playwright = self._browser, self._playwright
        self._browser = None
        self._playwright = None
        if browser is not None:
            try:
                await browser.close()
            except Exception as e:
                logger.warning("Error closing browser: %s", e)
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as e:
                logger.warning("Error stopping playwright: %s", e)


def _safe_filename(invoice_number: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", invoice_number)


class InvoiceRenderer:
    """Service for generating invoice PDFs."""

    def __init__(
        self,
        pool: BrowserPool,
        storage_path: str | None = None,
        public_prefix: str | None = None,
        attempts: int | None = None,
        retry_delay: float | None = None,
        timeout_ms: int | None = None,
    ):
        self.pool = pool
        self.storage_path = storage_path or settings.PDF_STORAGE_PATH
        self.public_prefix = (public_prefix or settings.PDF_PUBLIC_PREFIX).rstrip("/")
        self.attempts = max(1, attempts or settings.PDF_RENDER_ATTEMPTS)
        self.retry_delay = settings.PDF_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.timeout_ms = timeout_ms or settings.PDF_RENDER_TIMEOUT_MS

    async def render(
        self, invoice: Invoice, organization: Organization | None = None
    ) -> RenderedDocument:
        """Render ``invoice`` to PDF and store it under its invoice number.

        Each attempt uses its own page. A failed attempt invalidates the
        browser before retrying; after the last attempt DocumentRenderError
        is raised and no file is written.
        """
        html = build_invoice_html(invoice, organization)
        number = str(invoice.invoice_number)

        content: bytes | None = None
        last_error: Exception | None = None
        for attempt in range(1, self.attempts + 1):
            try:
                content = await self._render_once(html)
                break
            except Exception as e:
                last_error = e
                logger.warning(
                    "PDF render attempt %d/%d for %s failed: %s", attempt, self.attempts, number, e
                )
                await self.pool.invalidate()
                if attempt < self.attempts:
                    await asyncio.sleep(self.retry_delay)

        if content is None:
            raise DocumentRenderError(f"Failed to render invoice {number}") from last_error

        filename = f"{_safe_filename(number)}.pdf"
        path = await asyncio.to_thread(self._write, filename, content)
        logger.info("Rendered invoice %s to %s", number, path)
        return RenderedDocument(
            content=content, path=path, url=f"{self.public_prefix}/{filename}"
        )

    async def _render_once(self, html: str) -> bytes:
        browser = await self.pool.acquire()
        page = await browser.new_page()
        try:
            await page.set_content(html, wait_until="load", timeout=self.timeout_ms)
            pdf: bytes = await page.pdf(
                format="A4",
                print_background=True,
                margin={"top": "20mm", "bottom": "20mm", "left": "15mm", "right": "15mm"},
            )
            return pdf
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.debug("Error closing page: %s", e)

    def _write(self, filename: str, content: bytes) -> str:
        """Write via a temp file and rename, so readers never see a partial PDF."""
        os.makedirs(self.storage_path, exist_ok=True)
        final_path = os.path.join(self.storage_path, filename)
        fd, tmp_path = tempfile.mkstemp(dir=self.storage_path, prefix=f".{filename}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(tmp_path, final_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        return final_path


browser_pool = BrowserPool()


def get_invoice_renderer() -> InvoiceRenderer:
    """FastAPI dependency returning a renderer bound to the shared browser pool."""
    return InvoiceRenderer(browser_pool)
