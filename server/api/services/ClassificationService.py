"""Automatic classification of incident reports through the generative model."""

import json
import re
from typing import Awaitable, Callable

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.llm.models.ChatCompletion import ChatMessage
from shared.helper.HelperConfig import HelperConfig
from shared.models.classification import FALLBACK_CLASSIFICATION, ClassificationResult
from shared.models.search import SourceItem

# narrow lookup of similar past reports, injected instead of the whole retrieval service
FindSimilar = Callable[[str], Awaitable[list[SourceItem]]]

_CODE_FENCE = re.compile(r"```(?:json)?\s*|\s*```")

CLASSIFICATION_PROMPT = """Bạn là hệ thống AI phân loại báo cáo sự cố cơ sở vật chất.

MÔ TẢ SỰ CỐ:
{description}
{location}{similar}
YÊU CẦU: Phân tích và trả về JSON với format chính xác:
{{
  "category": "DIEN|NUOC|MANG|NOI_THAT|DIEU_HOA|VE_SINH|AN_NINH|KHAC",
  "priority": "CRITICAL|HIGH|MEDIUM|LOW",
  "suggestedStaffSkills": ["skill1", "skill2"],
  "estimatedDuration": 60,
  "reasoning": "Lý do phân loại",
  "confidence": 0.85
}}

CATEGORIES:
- DIEN: mất điện, chập điện, bóng đèn, công tắc, ổ cắm
- NUOC: rò rỉ, tắc nghẽn, vòi nước, nhà vệ sinh
- MANG: Internet, WiFi, hệ thống mạng
- NOI_THAT: bàn ghế, cửa sổ, bảng, tủ
- DIEU_HOA: điều hòa, quạt, hệ thống làm mát
- VE_SINH: vệ sinh, rác thải, môi trường
- AN_NINH: cửa ra vào, khóa, camera
- KHAC: các vấn đề khác

PRIORITIES:
- CRITICAL: nguy hiểm tính mạng, cháy nổ, điện giật, nước tràn lớn
- HIGH: ảnh hưởng nhiều người, phòng học/lab, cần xử lý trong ngày
- MEDIUM: ảnh hưởng ít người, có thể đợi 1-2 ngày
- LOW: vấn đề nhỏ, không ảnh hưởng sử dụng

ESTIMATED DURATION (phút): 15-30 đơn giản, 30-120 trung bình, 120+ phức tạp.

CHỈ TRẢ VỀ JSON, KHÔNG THÊM TEXT KHÁC."""


class ClassificationService:
    """Classifies report descriptions, falling back to a fixed default on any failure."""

    def __init__(
        self,
        helper_config: HelperConfig,
        llm_client: LLMClientInterface,
        find_similar: FindSimilar | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._llm = llm_client
        self._find_similar = find_similar

    ##########################################
    ################ HELPER ##################
    ##########################################

    async def _similar_reports(self, description: str) -> list[SourceItem]:
        if self._find_similar is None:
            return []
        try:
            return (await self._find_similar(description))[:3]
        except Exception as exc:
            self.logging.warning("Similar report lookup failed, classifying without it: %s", exc)
            return []

    @staticmethod
    def build_prompt(description: str, location: str | None = None, similar: list[SourceItem] | None = None) -> str:
        location_block = f"\nĐỊA ĐIỂM: {location}\n" if location else ""
        similar_block = ""
        if similar:
            lines = [f"- {item.content.splitlines()[0] if item.content else ''} ({item.metadata.get('category', '')})" for item in similar]
            similar_block = "\nCÁC SỰ CỐ TƯƠNG TỰ ĐÃ GHI NHẬN:\n" + "\n".join(lines) + "\n"
        return CLASSIFICATION_PROMPT.format(description=description, location=location_block, similar=similar_block)

    @staticmethod
    def parse_response(content: str) -> ClassificationResult:
        """Parse the model's JSON answer, tolerating markdown code fences.

        Raises:
            ValueError: If the answer is not valid classification JSON.
        """
        data = json.loads(_CODE_FENCE.sub("", content).strip())
        return ClassificationResult.model_validate(data)

    ##########################################
    ################ CORE ####################
    ##########################################

    async def classify_report(self, description: str, location: str | None = None) -> ClassificationResult:
        """Classify a report description. Never raises."""
        self.logging.info("Classifying report: %r", description[:50])
        similar = await self._similar_reports(description)
        try:
            completion = await self._llm.do_chat(
                [ChatMessage(role="user", content=self.build_prompt(description, location, similar))],
                temperature=0.2,
                max_tokens=500,
            )
            result = self.parse_response(completion.content)
        except Exception as exc:
            self.logging.error("Error classifying report, using fallback: %s", exc)
            return FALLBACK_CLASSIFICATION.model_copy(deep=True)
        result.similar_report_ids = [item.id for item in similar]
        self.logging.info("Classification result: %s - %s", result.category, result.priority)
        return result

    async def suggest_priority(self, description: str) -> str:
        result = await self.classify_report(description)
        return result.priority
