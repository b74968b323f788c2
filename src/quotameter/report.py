import math
from datetime import datetime
from typing import Sequence

from quotameter.models import (
    AggregateResult,
    QuotaReport,
    RefreshSummary,
    SessionTokenSummary,
    UsageWindow,
)

UNITS: "tuple[tuple[int, str], ...]" = (
    (1_000_000_000, "B"),
    (1_000_000, "M"),
    (1_000, "K"),
)

# display names for logged source provider ids, matched by substring
SOURCE_NAMES: "tuple[tuple[tuple[str, ...], str], ...]" = (
    (("opencode",), "OpenCode"),
    (("cursor",), "Cursor"),
    (("claude", "anthropic"), "Claude"),
    (("github", "copilot"), "Copilot"),
    (("openai", "chatgpt", "codex"), "OpenAI"),
    (("google", "antigravity", "gemini"), "Google"),
    (("azure",), "Azure"),
)


def fmt_usd(value: "float") -> "str":
    if not math.isfinite(value):
        return "$0.00"
    return f"${value:.2f}"


def fmt_compact(value: "float") -> "str":
    """
    formats counts as 950, 1.2K, 3.4M, 120M.
    """
    if not math.isfinite(value):
        return "0"
    sign = "-" if value < 0 else ""
    magnitude = abs(value)
    for size, suffix in UNITS:
        if magnitude >= size:
            scaled = magnitude / size
            digits = 0 if scaled >= 100 else 1
            return f"{sign}{scaled:.{digits}f}{suffix}"
    return str(int(value))


def fmt_window(window: "UsageWindow") -> "str":
    if window.since_ms is None and window.until_ms is None:
        return "all time"

    def local(ms: "int | None", default: "str") -> "str":
        if ms is None:
            return default
        return datetime.fromtimestamp(ms / 1000).strftime("%H:%M %Y-%m-%d")

    return f"{local(window.since_ms, '-')} .. {local(window.until_ms, 'now')}"


def source_name(provider_id: "str") -> "str":
    lower = provider_id.lower()
    for needles, name in SOURCE_NAMES:
        if any(n in lower for n in needles):
            return name
    return provider_id or "Unknown"


def truncate_title(title: "str") -> "str":
    title = title.strip()
    if len(title) <= 23:
        return title
    return f"{title[:10]}…{title[-10:]}"


def render_table(headers: "Sequence[str]", rows: "Sequence[Sequence[str]]") -> "str":
    """
    renders a plain-text table; the first column is left
    aligned, the others right aligned.
    """
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    def line(cells: "Sequence[str]") -> "str":
        parts = [
            cell.ljust(widths[i]) if i == 0 else cell.rjust(widths[i])
            for i, cell in enumerate(cells)
        ]
        return "  ".join(parts).rstrip()

    out = [line(headers), line(["-" * w for w in widths])]
    out.extend(line(row) for row in rows)
    return "\n".join(out)


def format_stats_report(
    result: "AggregateResult",
    title: "str" = "Token usage",
    top_models: "int" = 12,
    top_sessions: "int" = 8,
    top_unknown: "int" = 20,
) -> "str":
    totals = result.totals
    lines = [f"# {title}", ""]
    lines.append(
        render_table(
            ["Window", "Messages", "Sessions", "Tokens", "Cost"],
            [
                [
                    fmt_window(result.window),
                    fmt_compact(totals.message_count),
                    fmt_compact(totals.session_count),
                    fmt_compact(totals.priced.total() + totals.unknown.total()),
                    fmt_usd(totals.cost_usd),
                ]
            ],
        )
    )

    if result.by_source_model:
        rows = [
            [
                f"{source_name(r.provider_id)} {r.model_id}",
                fmt_compact(r.tokens.input),
                fmt_compact(r.tokens.output),
                fmt_compact(r.tokens.cache_read),
                fmt_compact(r.tokens.cache_write),
                fmt_compact(r.tokens.reasoning),
                fmt_usd(r.cost_usd),
            ]
            for r in result.by_source_model[:top_models]
        ]
        lines += ["", "## Models", ""]
        lines.append(
            render_table(
                ["Model", "Input", "Output", "C.Read", "C.Write", "Reason", "Cost"],
                rows,
            )
        )

    if result.by_session:
        rows = [
            [
                r.session_id,
                fmt_usd(r.cost_usd),
                fmt_compact(r.tokens.total()),
                fmt_compact(r.message_count),
                truncate_title(r.title),
            ]
            for r in result.by_session[:top_sessions]
        ]
        lines += ["", "## Top sessions", ""]
        lines.append(render_table(["Session", "Cost", "Tokens", "Msgs", "Title"], rows))

    if result.unknown:
        rows = []
        for r in result.unknown[:top_unknown]:
            mapped = "-"
            if r.key.mapped_provider and r.key.mapped_model:
                mapped = f"{r.key.mapped_provider}/{r.key.mapped_model}"
            rows.append(
                [
                    f"{source_name(r.key.source_provider)} {r.key.source_model}",
                    mapped,
                    fmt_compact(r.tokens.total()),
                    fmt_compact(r.message_count),
                ]
            )
        lines += ["", "## Unknown pricing", ""]
        lines.append(render_table(["Model", "Mapped", "Tokens", "Msgs"], rows))

    return "\n".join(lines)


def format_session_tokens(summary: "SessionTokenSummary") -> "str":
    rows = [
        [m.model_id, fmt_compact(m.input), fmt_compact(m.output)]
        for m in summary.models
    ]
    rows.append(
        ["total", fmt_compact(summary.total_input), fmt_compact(summary.total_output)]
    )
    return render_table(["Model", "Input", "Output"], rows)


def format_quota_report(report: "QuotaReport") -> "str":
    lines: "list[str]" = []
    for m in report.models:
        line = f"{m.display_name} {m.percent_remaining}%"
        if m.account_email:
            line += f" ({m.account_email})"
        if m.reset_time_iso:
            line += f" resets {m.reset_time_iso}"
        lines.append(line)

    for failure in report.errors:
        lines.append(f"{failure.email}: error: {failure.error}")

    if not lines and report.error:
        lines.append(f"error: {report.error}")
    return "\n".join(lines)


def format_refresh_summary(summary: "RefreshSummary") -> "str":
    lines = [f"Refreshed {summary.success_count}/{summary.total} accounts"]
    for failure in summary.failures:
        lines.append(f"{failure.email}: {failure.error}")
    return "\n".join(lines)
