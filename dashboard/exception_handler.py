"""
Dashboard API 的错误出口，挂在 REST_FRAMEWORK['EXCEPTION_HANDLER'] 上。

前端所有页面（订单列表、日历、配送、KPIS、设置）共用一套判断：
响应里有 type 字段就是出错了，按 type 决定怎么提示。

  block             → 状态机拒绝（409），按 detail.allowed 刷新按钮
  validation_error  → 请求参数/请求体不对（400）
  not_found         → 订单 / 消息 / 参考数据不存在（404）
  error             → 写库失败或协议层错误，提示稍后重试

{
    "type":    "block",
    "code":    "INVALID_TRANSITION",
    "message": "Cannot move order ORD-20240603-001 from confirmed to draft",
    "detail":  {"current": "confirmed", "target": "draft", "allowed": ["cancelled", "processing"]}
}
"""
import logging

from django.http import JsonResponse
from rest_framework.exceptions import APIException, ParseError
from rest_framework.exceptions import ValidationError as DRFValidationError

from .exceptions import BaseAppException, PersistenceFailure

logger = logging.getLogger(__name__)


def _error_response(type_, code, message, detail, status):
    body = {'type': type_, 'code': code, 'message': message}
    if detail is not None:
        body['detail'] = detail
    return JsonResponse(body, status=status)


def _view_name(context):
    view = context.get('view') if context else None
    return type(view).__name__ if view is not None else '-'


def unified_exception_handler(exc, context):
    """
    网关 / 查询层抛出的 BaseAppException 原样渲染；
    DRF 在解析请求体时抛的错误归到 validation_error；
    其余 DRF 协议错误（405 / 415 / 401 …）用 default_code 作为 code；
    未知异常返回 None，交给 Django 记录成 500。
    """
    if isinstance(exc, BaseAppException):
        if isinstance(exc, PersistenceFailure):
            logger.error("%s: %s %s", _view_name(context), exc.code, exc.detail)
        return _error_response(exc.type, exc.code, exc.message, exc.detail, exc.http_status)

    # 请求体不是合法 JSON，或 DRF 自己的字段校验
    if isinstance(exc, (DRFValidationError, ParseError)):
        return _error_response('validation_error', 'VALIDATION_ERROR',
                               'Request body could not be read', exc.detail, 400)

    if isinstance(exc, APIException):
        return _error_response('error', str(exc.default_code).upper(),
                               str(exc.detail), None, exc.status_code)

    return None
