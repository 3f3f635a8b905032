# src/collectors/artifacts.py — v1
"""Builders for the per-item artifacts every collector archives.

raw.json holds the provider payload; watch.html is a small page linking to
the original post and serves as the primary artifact when no media file is
stored.
"""

from __future__ import annotations

import html
import json
from typing import Any

from pulsecollect.core.models import Artifact
from pulsecollect.storage.layout import RAW_JSON, WATCH_PAGE

_WATCH_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Watch - {platform}</title>
  <style>
    body {{ font-family: sans-serif; max-width: 600px; margin: 50px auto; text-align: center; }}
    a {{ display: inline-block; padding: 12px 24px; background: #0095f6; color: white;
         text-decoration: none; border-radius: 6px; }}
    .meta {{ color: #666; font-size: 14px; margin-top: 20px; }}
  </style>
</head>
<body>
  <h1>{platform} Watch Link</h1>
  {creator}
  <p><a href="{url}" target="_blank" rel="noopener">Open original post</a></p>
  <p class="meta">{url}</p>
</body>
</html>
"""


def raw_json_artifact(item: dict[str, Any]) -> Artifact:
    return Artifact(
        name=RAW_JSON,
        payload=json.dumps(item, indent=2, ensure_ascii=False, default=str),
    )


def watch_artifact(watch_url: str, platform: str, username: str = "") -> Artifact:
    creator = f"<p>Creator: @{html.escape(username)}</p>" if username else ""
    page = _WATCH_TEMPLATE.format(
        platform=html.escape(platform),
        creator=creator,
        url=html.escape(watch_url, quote=True),
    )
    return Artifact(name=WATCH_PAGE, payload=page, is_primary=True)
