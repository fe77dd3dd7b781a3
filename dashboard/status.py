"""
订单状态机。

    draft ──► confirmed ──► processing ──► delivered
      │           │              │
      └───────────┴──────────────┴──────► cancelled

没有回退边；delivered / cancelled 是终态。
allowed_transitions() 是唯一的规则来源：serializer 用它渲染可选项，
services 用它做校验，两边不各写一份。

transition() 只改内存里的对象（model 实例或任何带 status / confirmed_at /
delivered_at 属性的对象），持久化由 services 负责。
"""

from django.utils import timezone

from .exceptions import IllegalDeletion, InvalidTransition

DRAFT = 'draft'
CONFIRMED = 'confirmed'
PROCESSING = 'processing'
DELIVERED = 'delivered'
CANCELLED = 'cancelled'

STATUS_CHOICES = [
    (DRAFT, 'Draft'),
    (CONFIRMED, 'Confirmed'),
    (PROCESSING, 'Processing'),
    (DELIVERED, 'Delivered'),
    (CANCELLED, 'Cancelled'),
]

# 界面显示文案（韩文）
STATUS_LABELS = {
    DRAFT: '임시',
    CONFIRMED: '확인됨',
    PROCESSING: '처리중',
    DELIVERED: '배송완료',
    CANCELLED: '취소',
}

_TRANSITIONS = {
    DRAFT: frozenset({CONFIRMED, CANCELLED}),
    CONFIRMED: frozenset({PROCESSING, CANCELLED}),
    PROCESSING: frozenset({DELIVERED, CANCELLED}),
    DELIVERED: frozenset(),
    CANCELLED: frozenset(),
}


def allowed_transitions(status: str) -> frozenset:
    """合法的下一状态集合。未知状态返回空集。"""
    return _TRANSITIONS.get(status, frozenset())


def can_transition(current: str, target: str) -> bool:
    return target in allowed_transitions(current)


def is_terminal(status: str) -> bool:
    return status in _TRANSITIONS and not _TRANSITIONS[status]


def transition(order, target: str, now=None) -> list[str]:
    """
    把 order 从当前状态推进到 target。

    - target 不合法 → 抛 InvalidTransition，order 不做任何修改
    - target == confirmed → confirmed_at = now
    - target == delivered → delivered_at = now
    - 其他时间戳一律不动

    Returns:
        被修改的字段名列表，services 直接传给 save(update_fields=...)
    """
    current = order.status
    if not can_transition(current, target):
        label = getattr(order, 'order_number', None) or getattr(order, 'id', '')
        raise InvalidTransition(
            message=f"Cannot move order {label} from {current} to {target}",
            detail={
                'current': current,
                'target': target,
                'allowed': sorted(allowed_transitions(current)),
            },
        )

    now = now or timezone.now()
    changed = ['status']
    order.status = target

    if target == CONFIRMED:
        order.confirmed_at = now
        changed.append('confirmed_at')
    elif target == DELIVERED:
        order.delivered_at = now
        changed.append('delivered_at')

    return changed


def confirm(order, now=None) -> list[str]:
    """确认按钮：draft → confirmed 的快捷方式。"""
    return transition(order, CONFIRMED, now=now)


def ensure_deletable(order) -> None:
    """只有 draft 可以删除，其余状态抛 IllegalDeletion。"""
    if order.status != DRAFT:
        raise IllegalDeletion(
            message=f"Only draft orders can be deleted (order {order.order_number} is {order.status})",
            detail={'order_id': order.id, 'status': order.status},
        )
