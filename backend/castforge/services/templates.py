"""
Intro/outro text templates.

Templates are plain text with {date}, {topic}, {duration} and {title}
placeholders, e.g. "歡迎收聽，今天是{date}，我們來聊聊{topic}。"
"""

import re
from datetime import date, datetime

_PLACEHOLDER_RE = re.compile(r"\{(date|topic|duration|title)\}")


def format_date(value: date | datetime) -> str:
    """Render a date as YYYY年M月D日."""
    return f"{value.year}年{value.month}月{value.day}日"


def format_duration(seconds: float) -> str:
    """
    Render a duration in hours and minutes.

    Examples:
        >>> format_duration(5400)
        '1小時30分鐘'
        >>> format_duration(600)
        '10分鐘'
        >>> format_duration(42)
        '42秒'
    """
    total = int(round(seconds))
    if total < 60:
        return f"{total}秒"

    hours, remainder = divmod(total, 3600)
    minutes = remainder // 60
    parts = []
    if hours:
        parts.append(f"{hours}小時")
    if minutes:
        parts.append(f"{minutes}分鐘")
    return "".join(parts)


def render_template(
    template: str,
    date: str | None = None,
    topic: str | None = None,
    duration: str | None = None,
    title: str | None = None,
) -> str:
    """
    Substitute known placeholders in a template.

    Placeholders without a supplied value and unknown placeholders are
    left in the text untouched.

    Args:
        template: Template text
        date: Formatted date
        topic: Episode topic
        duration: Formatted duration
        title: Episode title

    Returns:
        Rendered text
    """
    values = {"date": date, "topic": topic, "duration": duration, "title": title}

    def substitute(match: re.Match) -> str:
        value = values[match.group(1)]
        return match.group(0) if value is None else value

    return _PLACEHOLDER_RE.sub(substitute, template)
