"""审核状态：商品与创作者申请共用的三态状态校验。"""


class ModerationError(Exception):
    """状态变更被拒绝（非法状态值或不允许的流转）。"""
    pass


def validate_status(status: str, allowed: tuple) -> str:
    """
    校验目标状态是否在允许集合内。状态之间可以任意往返，不存在终态。

    Raises:
        ModerationError: 状态值不合法。
    """
    value = (status or "").strip().lower()
    if value not in allowed:
        raise ModerationError(f"无效状态: {status}，可选值: {', '.join(allowed)}")
    return value
