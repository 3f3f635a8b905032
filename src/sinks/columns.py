# src/sinks/columns.py — v1
"""Fixed tabular schemas per source and cell conversion rules.

Column order is part of the output contract. List and dict values are
stored as JSON text, booleans as "true"/"false", missing values as "".
"""

from __future__ import annotations

import json
from typing import Any

MEMO_MAX_CHARS = 300

TIKTOK_COLUMNS: list[str] = [
    "platform_post_id",
    "create_username",
    "posted_at",
    "caption_or_description",
    "region_code",
    "music_id",
    "hashtag_names",
    "effect_ids",
    "favorites_count",
    "video_duration",
    "is_stem_verified",
    "voice_to_text",
    "view",
    "like",
    "comments",
    "share_count",
    "playlist_id",
    "hashtag_info_list",
    "sticker_info_list",
    "effect_info_list",
    "video_mention_list",
    "video_label",
    "video_tag",
    "drive_url",
    "memo",
]

INSTAGRAM_COLUMNS: list[str] = [
    "platform_post_id",
    "create_username",
    "posted_at",
    "caption_or_description",
    "post_url",
    "like_count",
    "comments_count",
    "media_type",
    "media_url",
    "thumbnail_url",
    "shortcode",
    "media_product_type",
    "is_comment_enabled",
    "is_shared_to_feed",
    "children",
    "edges_comments",
    "edges_insights",
    "edges_collaborators",
    "boost_ads_list",
    "boost_eligibility_info",
    "copyright_check_information_status",
    "drive_url",
    "memo",
]

X_COLUMNS: list[str] = [
    "platform_post_id",
    "create_username",
    "posted_at",
    "caption_or_description",
    "post_url",
    "like_count",
    "retweet_count",
    "reply_count",
    "quote_count",
    "view_count",
    "bookmark_count",
    "lang",
    "is_reply",
    "conversation_id",
    "hashtags",
    "mentions",
    "urls",
    "author_followers",
    "drive_url",
    "memo",
]

COLUMNS_BY_SOURCE: dict[str, list[str]] = {
    "instagram": INSTAGRAM_COLUMNS,
    "x": X_COLUMNS,
    "tiktok": TIKTOK_COLUMNS,
}


def to_cell(value: Any) -> str | int | float:
    """Convert a record value to a tabular cell."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return value


def record_to_row(record: dict[str, Any], columns: list[str]) -> list[Any]:
    """Project a normalized record onto a column order."""
    return [to_cell(record.get(col)) for col in columns]


def truncate_memo(memo: str, limit: int = MEMO_MAX_CHARS) -> str:
    if len(memo) <= limit:
        return memo
    return memo[: limit - 3] + "..."


def join_memo(notes: list[str]) -> str:
    """Join memo notes and truncate to the memo column limit."""
    return truncate_memo("; ".join(n for n in notes if n))
