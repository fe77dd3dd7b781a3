"""
统一异常体系。

所有业务异常继承 BaseAppException，包含：
- type:        错误类型标识（validation_error / block / not_found / error）
- code:        业务错误码（INVALID_TRANSITION / ILLEGAL_DELETION / ...）
- message:     人类可读的描述
- detail:      可选的附加信息（dict / list / None）
- http_status: HTTP 状态码

Service 层只需 raise，exception_handler 统一捕获并格式化响应。
状态变更和删除失败时数据保持原样，不做重试。
"""


class BaseAppException(Exception):
    """所有业务异常的基类。"""

    type = 'error'
    code = 'UNKNOWN_ERROR'
    http_status = 500

    def __init__(self, message, code=None, detail=None, http_status=None):
        self.message = message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.detail = detail
        super().__init__(message)


class ValidationError(BaseAppException):
    """输入验证失败，400。"""

    type = 'validation_error'
    code = 'VALIDATION_ERROR'
    http_status = 400


class BlockError(BaseAppException):
    """业务规则阻止操作。service 层抛出，409。"""

    type = 'block'
    code = 'BUSINESS_BLOCK'
    http_status = 409


class InvalidTransition(BlockError):
    """
    请求的目标状态不在 allowed_transitions(当前状态) 里。

    detail 带上 current / target / allowed，前端可以直接展示合法选项。
    """

    code = 'INVALID_TRANSITION'


class IllegalDeletion(BlockError):
    """只有 draft 订单可以删除。"""

    code = 'ILLEGAL_DELETION'


class NotFound(BaseAppException):
    """变更时找不到订单 / 消息 / 参考数据。"""

    type = 'not_found'
    code = 'NOT_FOUND'
    http_status = 404


class PersistenceFailure(BaseAppException):
    """底层数据库 / 网络错误。调用方自行决定是否重试。"""

    type = 'error'
    code = 'PERSISTENCE_FAILURE'
    http_status = 503
