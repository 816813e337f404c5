"""Case timeline assembled from stored provider results"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Iterable

RESULT_KEYS = ("responses", "result", "response_data", "data")


def extract_responses(result: Any) -> List[Any]:
    """The first list found under the known result keys"""
    if isinstance(result, list):
        return result
    if not isinstance(result, dict):
        return []
    for key in RESULT_KEYS:
        value = result.get(key)
        if isinstance(value, list):
            return value
        if isinstance(value, dict) and isinstance(value.get("data"), list):
            return value["data"]
    return []


def _data(item: Any) -> Dict[str, Any]:
    if isinstance(item, dict):
        inner = item.get("response_data")
        return inner if isinstance(inner, dict) else item
    return {}


def timeline_items(responses: Iterable[Any]) -> List[Dict[str, Any]]:
    items = []
    for response in responses:
        d = _data(response)
        items.append({
            "date": d.get("date") or d.get("event_date") or d.get("created_at") or d.get("updated_at"),
            "title": d.get("title") or d.get("description") or d.get("summary") or d.get("event_title"),
            "description": d.get("description") or d.get("summary") or d.get("details") or d.get("event_description"),
        })
    return items


def steps_timeline(response_data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Lawsuit steps as timeline entries"""
    steps = response_data.get("steps") if isinstance(response_data, dict) else None
    if not isinstance(steps, list):
        return []
    return [
        {
            "date": s.get("step_date") or s.get("updated_at") or s.get("created_at"),
            "title": s.get("content") or "Update",
            "description": str(s.get("lawsuit_cnj") or ""),
        }
        for s in steps
        if isinstance(s, dict)
    ]


def parse_date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def sort_timeline(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Newest first; undated entries last"""
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(items, key=lambda item: parse_date(item.get("date")) or epoch, reverse=True)


def last_update(timeline: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not timeline:
        return None
    latest = timeline[0]
    return {
        "date": latest.get("date"),
        "detail": latest.get("title") or latest.get("description") or "",
        "next": (timeline[1].get("title") or "") if len(timeline) > 1 else "",
    }


def summarize_requests(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Timeline over the stored results of every matching one-off request"""
    timeline: List[Dict[str, Any]] = []
    process_number = process_title = status = None
    for row in rows:
        result = row.get("result") or {}
        responses = extract_responses(result)
        timeline.extend(timeline_items(responses))
        if responses:
            first = _data(responses[0])
            process_number = process_number or first.get("lawsuit_cnj") or first.get("code")
            process_title = process_title or first.get("subject") or first.get("title")
        if isinstance(result, dict):
            status = status or result.get("request_status")
        status = status or row.get("status")

    timeline = sort_timeline(timeline)
    return {
        "timeline": timeline,
        "lastUpdate": last_update(timeline),
        "processNumber": process_number,
        "processTitle": process_title,
        "status": status or "pending",
    }


def summarize_client_request(row: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Timeline for a public-portal lookup row, falling back to the steps of the last result"""
    if not row:
        return {"timeline": [], "lastUpdate": None, "processNumber": None, "processTitle": None, "status": "pending"}

    timeline = list(row.get("timeline") or [])
    process_number = row.get("process_number")
    process_title = row.get("process_title")
    status = row.get("status")

    metadata = row.get("metadata") or {}
    if not timeline and isinstance(metadata, dict):
        responses = extract_responses(metadata)
        last = responses[-1] if responses else metadata.get("last")
        response_data = _data(last) if last else {}
        timeline = steps_timeline(response_data)
        if timeline:
            process_number = process_number or response_data.get("code") or response_data.get("lawsuit_cnj")
            process_title = (
                process_title
                or response_data.get("name")
                or response_data.get("subject")
                or response_data.get("title")
            )
            status = status or metadata.get("request_status")

    timeline = sort_timeline(timeline)
    return {
        "timeline": timeline,
        "lastUpdate": last_update(timeline),
        "processNumber": process_number,
        "processTitle": process_title,
        "status": status or "pending",
    }
