"""Text formatting for indexable entities.

Turns reports and knowledge articles into the labelled Vietnamese text that is
embedded and shown to the generative model, extracts the metadata copied into
the vector payload, and computes the content hash used to tell metadata-only
updates from content changes.
"""

import hashlib
from datetime import datetime

import pytz

from shared.models.entities import Entity, KnowledgeEntity, ReportEntity

PRIORITY_LABELS = {
    "CRITICAL": "khẩn cấp",
    "HIGH": "cao",
    "MEDIUM": "trung bình",
    "LOW": "thấp",
}

PRIORITY_EMPHASIS = {
    "CRITICAL": "Sự kiện khẩn cấp cần xử lý ngay",
    "HIGH": "Sự kiện quan trọng cần xử lý sớm",
}


class TextFormatter:
    """Per-source-type formatters for the indexing pipeline."""

    def __init__(self, tz_name: str = "Asia/Ho_Chi_Minh") -> None:
        self.tz = pytz.timezone(tz_name)

    ##########################################
    ################# DATES ##################
    ##########################################

    def format_date_vietnamese(self, value: datetime | None) -> str:
        """Format a timestamp like "lúc 10:30 sáng ngày 13/12/2025".

        Naive datetimes are taken as UTC. Returns "" for None.
        """
        if value is None:
            return ""
        if value.tzinfo is None:
            value = pytz.utc.localize(value)
        local = value.astimezone(self.tz)
        hours, minutes = local.hour, local.minute
        if hours < 12:
            time_str = f"{hours}:{minutes:02d} sáng"
        elif hours == 12:
            time_str = f"12:{minutes:02d} trưa"
        else:
            time_str = f"{hours - 12}:{minutes:02d} chiều"
        return f"lúc {time_str} ngày {local.day}/{local.month}/{local.year}"

    ##########################################
    ################# TEXT ###################
    ##########################################

    def format_report(self, report: ReportEntity) -> str:
        parts: list[str] = []

        # timestamp first so time-based questions match
        time_str = self.format_date_vietnamese(report.created_at)
        if time_str:
            parts.append(f"Thời gian báo cáo: {time_str}")

        parts.append(f"Loại báo cáo: {report.type}")
        parts.append(f"Mô tả: {report.description}")

        if report.priority:
            label = PRIORITY_LABELS.get(report.priority, report.priority)
            parts.append(f"Mức độ ưu tiên: {report.priority} ({label})")
            if report.priority in PRIORITY_EMPHASIS:
                parts.append(PRIORITY_EMPHASIS[report.priority])

        if report.asset:
            code = f" ({report.asset.code})" if report.asset.code else ""
            parts.append(f"Tài sản: {report.asset.name}{code}")
            if report.asset.zone:
                parts.append(f"Khu vực: {report.asset.zone}")
            if report.asset.area:
                parts.append(f"Khu: {report.asset.area}")

        if report.created_by:
            parts.append(f"Người báo cáo: {report.created_by}")

        # status lives in the metadata only, a status change must not alter the text
        return "\n".join(parts)

    def format_knowledge(self, knowledge: KnowledgeEntity) -> str:
        parts = [
            f"Tiêu đề: {knowledge.title}",
            f"Loại: {knowledge.type.value}",
            f"Nội dung: {knowledge.content}",
        ]
        if knowledge.category:
            parts.append(f"Danh mục: {knowledge.category}")
        if knowledge.tags:
            parts.append(f"Tags: {', '.join(knowledge.tags)}")
        return "\n".join(parts)

    def format_text(self, entity: Entity) -> str:
        if isinstance(entity, ReportEntity):
            return self.format_report(entity)
        return self.format_knowledge(entity)

    ##########################################
    ############### METADATA #################
    ##########################################

    def extract_metadata(self, entity: Entity) -> dict:
        """Metadata copied into the vector payload and the ledger entry.

        Includes the content_hash of the formatted text.
        """
        created_at = entity.created_at.isoformat() if entity.created_at else None
        if isinstance(entity, ReportEntity):
            location = None
            if entity.asset:
                location = entity.asset.zone or entity.asset.area
            metadata = {
                "title": f"Báo cáo {entity.type}",
                "category": entity.type,
                "location": location,
                "status": entity.status,
                "priority": entity.priority,
                "created_at": created_at,
            }
        else:
            metadata = {
                "title": entity.title,
                "category": entity.category,
                "type": entity.type.value,
                "tags": list(entity.tags),
                "created_at": created_at,
            }
        metadata["content_hash"] = self.content_hash(entity)
        return metadata

    def content_hash(self, entity: Entity) -> str:
        """SHA-256 of the formatted text. Equal hashes mean only metadata changed."""
        return hashlib.sha256(self.format_text(entity).encode("utf-8")).hexdigest()
