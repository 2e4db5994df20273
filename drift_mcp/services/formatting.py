"""Форматирование JSON-ответов Tusk Drift API в текст для ассистента"""
import json
from typing import Any, Dict, List, Optional


def _dumps(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def _indent_json(value: Any, prefix: str) -> str:
    return _dumps(value).replace("\n", "\n" + prefix)


def _duration(value: Any) -> str:
    if isinstance(value, (int, float)):
        return f"{value:.2f}"
    return "N/A"


def _status_label(span: Dict[str, Any]) -> str:
    code = (span.get("status") or {}).get("code")
    if code == 0:
        return "OK"
    if code == 1:
        return "UNSET"
    return "ERROR"


def _status_icon(span: Dict[str, Any]) -> str:
    code = (span.get("status") or {}).get("code")
    if code == 0:
        return "✓"
    if code == 2:
        return "✗"
    return "○"


def format_query_spans(result: Dict[str, Any], include_input_output: bool = False, offset: int = 0) -> str:
    spans: List[Dict[str, Any]] = result.get("spans") or []
    summary = [f"Found {result.get('total', len(spans))} spans (showing {len(spans)})"]
    if result.get("hasMore"):
        summary.append(f"More results available (offset: {offset + len(spans)})")

    blocks = []
    for i, span in enumerate(spans, 1):
        lines = [
            f"[{i}] {span.get('name')}",
            f"    ID: {span.get('id')}",
            f"    Trace: {span.get('traceId')}",
            f"    Package: {span.get('packageName')}",
            f"    Duration: {_duration(span.get('duration'))}ms",
            f"    Status: {_status_label(span)}",
            f"    Timestamp: {span.get('timestamp')}",
        ]
        if include_input_output and span.get("inputValue"):
            lines.append(f"    Input: {_indent_json(span['inputValue'], '    ')}")
        if include_input_output and span.get("outputValue"):
            lines.append(f"    Output: {_indent_json(span['outputValue'], '    ')}")
        blocks.append("\n".join(lines))

    return "\n".join(summary) + "\n\n" + "\n\n".join(blocks)


def format_schema(result: Dict[str, Any]) -> str:
    sections = []

    if result.get("description"):
        sections.append(f"## Description\n{result['description']}")

    common = result.get("commonJsonbFields")
    if common:
        input_fields = ", ".join(common.get("inputValue") or []) or "(none)"
        output_fields = ", ".join(common.get("outputValue") or []) or "(none)"
        sections.append(
            "## Common Queryable Fields\n\n"
            f"**inputValue fields:** {input_fields}\n\n"
            f"**outputValue fields:** {output_fields}"
        )

    for key, title in (
        ("inputSchema", "Input Schema"),
        ("outputSchema", "Output Schema"),
        ("exampleSpanRecording", "Example Span"),
    ):
        if result.get(key):
            sections.append(f"## {title}\n```json\n{_dumps(result[key])}\n```")

    return "\n\n".join(sections) or "No schema information available."


def format_distinct_values(result: Dict[str, Any]) -> str:
    values = result.get("values") or []
    header = f'Distinct values for "{result.get("field")}" ({len(values)} unique values):\n'
    rows = []
    for i, item in enumerate(values, 1):
        value = item.get("value")
        value_str = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
        rows.append(f"{i}. {value_str} ({item.get('count')} occurrences)")
    return header + "\n".join(rows)


# (ключ в ответе, подпись, формат)
_METRIC_LABELS = (
    ("count", "count", "{}"),
    ("errorCount", "errors", "{}"),
    ("errorRate", "error rate", "percent"),
    ("avgDuration", "avg", "ms"),
    ("minDuration", "min", "ms"),
    ("maxDuration", "max", "ms"),
    ("p50Duration", "p50", "ms"),
    ("p95Duration", "p95", "ms"),
    ("p99Duration", "p99", "ms"),
)


def format_aggregation(result: Dict[str, Any]) -> str:
    rows = result.get("results") or []
    header = f"Aggregation Results ({len(rows)} rows):\n"

    blocks = []
    for i, row in enumerate(rows, 1):
        group = ", ".join(f"{k}={v}" for k, v in (row.get("groupValues") or {}).items())
        metrics = []
        for key, label, kind in _METRIC_LABELS:
            value = row.get(key)
            if value is None:
                continue
            if kind == "percent":
                metrics.append(f"{label}: {value * 100:.2f}%")
            elif kind == "ms":
                metrics.append(f"{label}: {value:.2f}ms")
            else:
                metrics.append(f"{label}: {value}")
        bucket = f" [{row['timeBucket']}]" if row.get("timeBucket") else ""
        blocks.append(f"{i}. {group or '(all)'}{bucket}\n   {' | '.join(metrics)}")

    return header + "\n\n".join(blocks)


def format_trace_tree(span: Dict[str, Any], indent: int = 0, include_payloads: bool = False) -> str:
    """Рекурсивно рисует дерево span с отступом в два пробела на уровень"""
    prefix = "  " * indent
    text = (
        f"{prefix}{_status_icon(span)} {span.get('name')} "
        f"({_duration(span.get('duration'))}ms) [{span.get('packageName')}]\n"
    )
    text += f"{prefix}   ID: {span.get('spanId')}\n"

    if include_payloads and span.get("inputValue"):
        text += f"{prefix}   Input: {_indent_json(span['inputValue'], prefix + '   ')}\n"
    if include_payloads and span.get("outputValue"):
        text += f"{prefix}   Output: {_indent_json(span['outputValue'], prefix + '   ')}\n"

    for child in span.get("children") or []:
        text += format_trace_tree(child, indent + 1, include_payloads)
    return text


def format_trace(result: Dict[str, Any], trace_id: str, include_payloads: bool = False) -> str:
    tree: Optional[Dict[str, Any]] = result.get("traceTree")
    if not tree:
        return f"No trace found for ID: {trace_id}"
    header = f"Trace: {trace_id}\nSpan Count: {result.get('spanCount')}\n\nTrace Tree:\n"
    return header + format_trace_tree(tree, 0, include_payloads)


def format_spans_by_ids(result: Dict[str, Any], include_payloads: bool = True) -> str:
    spans = result.get("spans") or []
    if not spans:
        return "No spans found for the provided IDs."

    blocks = []
    for i, span in enumerate(spans, 1):
        lines = [
            f"## Span {i}: {span.get('name')}",
            f"- **ID:** {span.get('id')}",
            f"- **Trace ID:** {span.get('traceId')}",
            f"- **Span ID:** {span.get('spanId')}",
            f"- **Package:** {span.get('packageName')}",
            f"- **Duration:** {_duration(span.get('duration'))}ms",
            f"- **Status:** {_status_label(span)}",
            f"- **Timestamp:** {span.get('timestamp')}",
            f"- **Root Span:** {'Yes' if span.get('isRootSpan') else 'No'}",
        ]
        if include_payloads and span.get("inputValue"):
            lines.append(f"\n**Input:**\n```json\n{_dumps(span['inputValue'])}\n```")
        if include_payloads and span.get("outputValue"):
            lines.append(f"\n**Output:**\n```json\n{_dumps(span['outputValue'])}\n```")
        blocks.append("\n".join(lines))

    return f"Found {len(spans)} spans:\n\n" + "\n\n---\n\n".join(blocks)
