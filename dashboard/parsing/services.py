"""
具体解析服务实现。

新增解析服务：在此文件添加一个类，然后在 factory.py 注册即可。

已注册：
  edge_function — EdgeFunctionParseService  (外部 test-parse 函数，HTTP POST)
"""

import requests
from django.conf import settings

from .base import BaseParseService
from .types import ParsedItem, ParseResult


# ── EdgeFunctionParseService ───────────────────────────────────────────────
#
# 请求：POST {PARSE_FUNCTION_URL}  body = {"message": "..."}
# 认证：Authorization: Bearer {PARSE_FUNCTION_KEY}
# 响应示例：
# {
#   "hospital": {"id": 3, "name": "서울정형외과"},
#   "method": "ai",
#   "items": [
#     {"original_text": "무릎보호대 M 5개", "product_name": "무릎보호대",
#      "quantity": 5, "unit_type": "piece",
#      "match_status": "matched", "match_confidence": 0.93}
#   ]
# }

class EdgeFunctionParseService(BaseParseService):

    def parse(self, message: str) -> ParseResult:
        url = settings.PARSE_FUNCTION_URL
        if not url:
            raise ValueError("PARSE_FUNCTION_URL is not set")

        headers = {"Content-Type": "application/json"}
        if settings.PARSE_FUNCTION_KEY:
            headers["Authorization"] = f"Bearer {settings.PARSE_FUNCTION_KEY}"

        response = requests.post(
            url,
            json={"message": message},
            headers=headers,
            timeout=settings.PARSE_TIMEOUT,
        )
        response.raise_for_status()
        data = response.json()

        hospital = data.get("hospital") or {}
        return ParseResult(
            hospital_name=hospital.get("name") or data.get("hospital_name"),
            hospital_id=hospital.get("id") or data.get("hospital_id"),
            method=data.get("method") or "",
            items=[
                ParsedItem(
                    original_text=item.get("original_text") or "",
                    product_name=item.get("product_name"),
                    quantity=item.get("quantity"),
                    unit_type=item.get("unit_type"),
                    match_status=item.get("match_status") or "unmatched",
                    match_confidence=item.get("match_confidence"),
                )
                for item in data.get("items") or []
            ],
            raw=data,
        )
