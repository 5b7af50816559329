"""User-facing strings posted by the bridge."""

PLACEHOLDER_TEXT = {
    "en": "Please wait while I process your request...",
    "ja": "リクエストを処理しています。しばらくお待ちください...",
}

ARCHIVE_NOTICE = {
    "en": (
        "This conversation has been archived due to inactivity. "
        "Please start a new thread if you need further assistance."
    ),
    "ja": (
        "一定期間操作がなかったため、この会話はアーカイブされました。"
        "引き続きサポートが必要な場合は、新しいスレッドを開始してください。"
    ),
}

ARCHIVE_REASON = "No activity for one day"

DEFAULT_THREAD_NAME = "New conversation"


def placeholder_text(locale: str) -> str:
    return PLACEHOLDER_TEXT.get(locale, PLACEHOLDER_TEXT["en"])


def archive_notice(locale: str) -> str:
    return ARCHIVE_NOTICE.get(locale, ARCHIVE_NOTICE["en"])


def thread_name(content: str, max_len: int = 100) -> str:
    """Name for a thread started from a mention: its first line of text."""
    first_line = (content or "").strip().split("\n", 1)[0].strip()
    if not first_line:
        return DEFAULT_THREAD_NAME
    return first_line[:max_len]
