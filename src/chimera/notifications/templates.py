"""Message templates for sync notifications.

Plain functions returning Markdown-flavoured text. Names and error text are
interpolated through escape_markdown() so Telegram can parse the message.
Stores whose comparison is in sync (Severity.NONE) are left out of
difference listings; every rendered message goes through truncate() before
it is sent.
"""

from __future__ import annotations

import re

from src.chimera.sync.schemas import (
    ComparisonResult,
    Execution,
    ExecutionStatus,
    Severity,
    StoreSyncStatus,
)

MAX_STORE_LINES = 10
MAX_DIFFERENCE_STORES = 5
ERROR_EXCERPT_LENGTH = 300
TRUNCATION_SUFFIX = "\n\n... (message truncated)"

# Entity characters of Telegram legacy Markdown
_MARKDOWN_SPECIAL = re.compile(r"([_*`\[])")

_STATUS_HEADERS = {
    ExecutionStatus.SUCCESS: "✅ *Sync completed*",
    ExecutionStatus.PARTIAL: "⚠️ *Sync partially completed*",
    ExecutionStatus.FAILED: "❌ *Sync failed*",
    ExecutionStatus.CANCELLED: "⏹ *Sync cancelled*",
}

_STORE_ICONS = {
    StoreSyncStatus.SUCCESS: "✅",
    StoreSyncStatus.PARTIAL: "⚠️",
    StoreSyncStatus.FAILED: "❌",
    StoreSyncStatus.SKIPPED: "⏭",
    StoreSyncStatus.CANCELLED: "⏹",
}


def escape_markdown(text: str) -> str:
    """Backslash-escape the characters Telegram Markdown reads as entity markers."""
    return _MARKDOWN_SPECIAL.sub(r"\\\1", text)


def truncate(message: str, max_length: int = 4000) -> str:
    if len(message) <= max_length:
        return message
    return message[: max_length - len(TRUNCATION_SUFFIX)] + TRUNCATION_SUFFIX


def _excerpt(text: str, length: int = ERROR_EXCERPT_LENGTH) -> str:
    return text if len(text) <= length else text[: length - 3] + "..."


def _suffix(config_name: str | None) -> str:
    return f" ({escape_markdown(config_name)})" if config_name else ""


def render_start(execution: Execution, store_count: int, config_name: str | None = None) -> str:
    stores = "1 store" if store_count == 1 else f"{store_count} stores"
    return (
        f"🚀 *Sync started*{_suffix(config_name)}\n\n"
        f"📊 *Details:*\n"
        f"• Stores: {stores}\n"
        f"• Trigger: {execution.trigger.value}\n"
        f"• Started: {execution.started_at:%Y-%m-%d %H:%M:%S %Z}\n"
        f"• Execution: {execution.id}"
    )


def render_differences(comparisons: list[ComparisonResult], names: dict[str, str] | None = None) -> str:
    """List stores with differences, omitting stores that are in sync."""
    names = names or {}
    divergent = [c for c in comparisons if c.severity != Severity.NONE]
    if not divergent:
        return "✅ All stores are in sync."

    lines = [f"⚠️ *Differences found in {len(divergent)} store(s):*"]
    for comparison in divergent[:MAX_DIFFERENCE_STORES]:
        label = escape_markdown(names.get(comparison.store_id, comparison.store_id))
        critical = " 🚨" if comparison.severity == Severity.CRITICAL else ""
        lines.append(f"\n🏪 *{label}*{critical}")
        lines.append(f"  • Source: {comparison.source_count} products")
        lines.append(f"  • Target: {comparison.target_count} products")
        if comparison.missing_in_target:
            lines.append(f"  • 📤 Missing in target: {len(comparison.missing_in_target)}")
        if comparison.price_differences:
            lines.append(f"  • 💰 Price differences: {len(comparison.price_differences)}")
        if comparison.status_differences:
            lines.append(f"  • 🔁 Status differences: {len(comparison.status_differences)}")
        if comparison.extraneous_in_target:
            lines.append(f"  • 📥 Only in target: {comparison.extraneous_in_target}")

    if len(divergent) > MAX_DIFFERENCE_STORES:
        lines.append(f"\n... and {len(divergent) - MAX_DIFFERENCE_STORES} more store(s) with differences")
    return "\n".join(lines)


def render_finish(execution: Execution, config_name: str | None = None) -> str:
    summary = execution.summary
    header = _STATUS_HEADERS.get(execution.status, f"*Sync {execution.status.value}*")
    duration = round(summary.execution_time_ms / 1000)

    skipped = f", {summary.skipped_stores} skipped" if summary.skipped_stores else ""
    parts = [
        f"{header}{_suffix(config_name)}\n",
        "📊 *Summary:*",
        f"• Stores: {summary.successful_stores}/{summary.total_stores} succeeded{skipped}",
        f"• Products fetched: {summary.products_fetched}",
        f"• Products sent: {summary.products_sent}",
        f"• Differences: {summary.differences_found}",
        f"• Duration: {duration}s",
    ]

    if summary.failed_stores:
        parts.append(f"• ⚠️ Stores with errors: {summary.failed_stores}")

    store_lines = []
    for result in execution.results[:MAX_STORE_LINES]:
        icon = _STORE_ICONS.get(result.status, "•")
        sent = f" ({result.sent} products)" if result.sent else ""
        label = escape_markdown(result.store_name or result.registration)
        store_lines.append(f"  {icon} {label}{sent}")
    if store_lines:
        parts.append("\n🏪 *Stores:*\n" + "\n".join(store_lines))
    if len(execution.results) > MAX_STORE_LINES:
        parts.append(f"... and {len(execution.results) - MAX_STORE_LINES} more store(s)")

    comparisons = [r.comparison for r in execution.results if r.comparison is not None]
    if comparisons and any(c.severity != Severity.NONE for c in comparisons):
        names = {r.registration: r.store_name or r.registration for r in execution.results}
        parts.append("\n" + render_differences(comparisons, names))

    errors = [f"{r.store_name or r.registration}: {r.error}" for r in execution.results if r.error]
    if execution.error:
        errors.insert(0, execution.error)
    if errors:
        parts.append("\n🚨 *Errors:*\n" + escape_markdown(_excerpt("\n".join(errors))))

    return "\n".join(parts)


def render_comparison(comparisons: list[ComparisonResult], names: dict[str, str] | None = None) -> str:
    total = len(comparisons)
    divergent = sum(1 for c in comparisons if c.severity != Severity.NONE)
    return (
        "🔍 *Comparison source ↔ target*\n\n"
        "📊 *Summary:*\n"
        f"• Stores: {total}\n"
        f"• With differences: {divergent}\n"
        f"• In sync: {total - divergent}\n\n" + render_differences(comparisons, names)
    )
