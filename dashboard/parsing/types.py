"""
解析服务的标准响应结构。

所有 ParseService 实现的 parse() 都返回这个对象。
业务层（tasks.py / views）只认识这个格式，不知道背后是哪种解析服务。
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class ParsedItem:
    original_text: str
    product_name: Optional[str] = None
    quantity: Optional[int] = None
    unit_type: Optional[str] = None
    match_status: str = 'unmatched'          # matched / review / unmatched
    match_confidence: Optional[float] = None


@dataclass
class ParseResult:
    hospital_name: Optional[str] = None
    hospital_id: Optional[int] = None
    items: list[ParsedItem] = field(default_factory=list)
    method: str = ''                          # 解析服务报告的方法（ai / regex / ...）
    raw: Any = field(default=None, repr=False)

    def to_dict(self) -> dict:
        return {
            'hospital_name': self.hospital_name,
            'hospital_id': self.hospital_id,
            'method': self.method,
            'items': [vars(item) for item in self.items],
            'raw': self.raw,
        }
