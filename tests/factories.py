"""Domain entity builders shared by the sync, worker and API tests."""

from datetime import datetime, timedelta, timezone

from shared.models.entities import AssetRef, KnowledgeEntity, ReportEntity

BASE_TIME = datetime(2025, 12, 13, 3, 30, tzinfo=timezone.utc)


def make_report(report_id: str = "r-1", description: str = "Mất điện phòng A1.01", **overrides) -> ReportEntity:
    data = {
        "id": report_id,
        "type": "DIEN",
        "status": "PENDING",
        "description": description,
        "priority": "HIGH",
        "asset": AssetRef(name="Ổ cắm", code="OC-12", zone="Tòa A"),
        "created_by": "Trần Thị B",
        "created_at": BASE_TIME,
    }
    data.update(overrides)
    return ReportEntity(**data)


def make_knowledge(knowledge_id: str = "k-1", **overrides) -> KnowledgeEntity:
    data = {
        "id": knowledge_id,
        "title": "Kết nối wifi ký túc xá",
        "content": "Dùng tài khoản sinh viên để đăng nhập wifi KTX.",
        "type": "faq",
        "category": "MANG",
        "tags": ["wifi"],
        "created_at": BASE_TIME - timedelta(days=30),
    }
    data.update(overrides)
    return KnowledgeEntity(**data)
