"""
Feed publisher: the bounded list of rendered feed items and its
RSS 2.0 / Atom 1.0 / JSON Feed serializations.

Items are kept oldest-first. Once the list grows past the high water mark
the oldest items are dropped until only `low` remain. Serializations are
built on demand from the current list, newest item first.
"""

import json
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import List

from models import Event
from render import RenderContext, event_content, event_title
from settings import Settings

logger = logging.getLogger("feed")

ATOM_NS = "http://www.w3.org/2005/Atom"


@dataclass
class FeedItem:
    id: str
    title: str
    link: str
    date: int
    content: str

    @property
    def when(self) -> datetime:
        return datetime.fromtimestamp(self.date / 1000, tz=timezone.utc)


class FeedPublisher:
    def __init__(self, settings: Settings, context: RenderContext):
        self.settings = settings
        self.context = context
        self.items: List[FeedItem] = []

    def __len__(self) -> int:
        return len(self.items)

    def create_item(self, event: Event) -> FeedItem:
        return FeedItem(
            id=event.id,
            title=event_title(event),
            link=self.settings.resolve_application_url(f"event/{event.id}"),
            date=event.timestamp,
            content=event_content(event, self.context),
        )

    def publish(self, event: Event) -> None:
        """Render `event`, append it and enforce the water marks."""

        self.items.append(self.create_item(event))
        high = self.settings.feed_high_water_mark
        low = self.settings.feed_low_water_mark
        if len(self.items) > high:
            logger.debug(f"Feed exceeded high watermark of {high} items, reducing to {low}")
            del self.items[: len(self.items) - low]

    def _newest_first(self) -> List[FeedItem]:
        return list(reversed(self.items))

    @property
    def description(self) -> str:
        return f"Events for {self.context.instance_name}"

    def rss2(self) -> str:
        rss = ET.Element("rss", {"version": "2.0", "xmlns:atom": ATOM_NS})
        channel = ET.SubElement(rss, "channel")
        ET.SubElement(channel, "title").text = self.settings.feed_title
        ET.SubElement(channel, "link").text = self.settings.normalized_application_url
        ET.SubElement(channel, "description").text = self.description
        ET.SubElement(channel, "language").text = "en"
        ET.SubElement(channel, "generator").text = "sonarr-feed"
        ET.SubElement(channel, "atom:link", {
            "href": self.settings.resolve_application_url("rss"),
            "rel": "self",
            "type": "application/rss+xml",
        })
        if self.items:
            ET.SubElement(channel, "lastBuildDate").text = format_datetime(self.items[-1].when)
        for item in self._newest_first():
            node = ET.SubElement(channel, "item")
            ET.SubElement(node, "title").text = item.title
            ET.SubElement(node, "link").text = item.link
            ET.SubElement(node, "guid", {"isPermaLink": "false"}).text = item.id
            ET.SubElement(node, "pubDate").text = format_datetime(item.when)
            ET.SubElement(node, "description").text = item.content
        return '<?xml version="1.0" encoding="utf-8"?>\n' + ET.tostring(rss, encoding="unicode")

    def atom1(self) -> str:
        feed = ET.Element("feed", {"xmlns": ATOM_NS})
        ET.SubElement(feed, "id").text = self.settings.normalized_application_url
        ET.SubElement(feed, "title").text = self.settings.feed_title
        ET.SubElement(feed, "subtitle").text = self.description
        updated = self.items[-1].when if self.items else datetime.now(timezone.utc)
        ET.SubElement(feed, "updated").text = updated.isoformat()
        ET.SubElement(feed, "link", {"rel": "alternate", "href": self.settings.normalized_application_url})
        ET.SubElement(feed, "link", {"rel": "self", "href": self.settings.resolve_application_url("atom")})
        for item in self._newest_first():
            entry = ET.SubElement(feed, "entry")
            ET.SubElement(entry, "title", {"type": "html"}).text = item.title
            ET.SubElement(entry, "id").text = item.link
            ET.SubElement(entry, "link", {"href": item.link})
            ET.SubElement(entry, "updated").text = item.when.isoformat()
            ET.SubElement(entry, "published").text = item.when.isoformat()
            ET.SubElement(entry, "content", {"type": "html"}).text = item.content
        return '<?xml version="1.0" encoding="utf-8"?>\n' + ET.tostring(feed, encoding="unicode")

    def json1(self) -> str:
        doc = {
            "version": "https://jsonfeed.org/version/1.1",
            "title": self.settings.feed_title,
            "home_page_url": self.settings.normalized_application_url,
            "feed_url": self.settings.resolve_application_url("json"),
            "description": self.description,
            "language": "en",
            "items": [
                {
                    "id": item.id,
                    "url": item.link,
                    "title": item.title,
                    "content_html": item.content,
                    "date_published": item.when.isoformat(),
                }
                for item in self._newest_first()
            ],
        }
        return json.dumps(doc)
