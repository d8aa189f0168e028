"""
列表筛选：关键字不区分大小写的子串匹配，与状态精确匹配取交集。
空关键字匹配全部，状态为 "all" 或空时不过滤。
"""

from collections.abc import Callable, Iterable


def _nested(row: dict, *path: str):
    value = row
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def matches_search(term: str | None, values: Iterable) -> bool:
    """任一字段包含关键字即匹配；None 字段跳过。"""
    if not term:
        return True
    needle = term.lower()
    return any(needle in str(v).lower() for v in values if v is not None)


def _apply(
    rows: list[dict],
    search: str | None,
    fields: Callable[[dict], Iterable],
    predicates: list[Callable[[dict], bool]],
) -> list[dict]:
    return [
        row for row in rows
        if matches_search(search, fields(row)) and all(p(row) for p in predicates)
    ]


def _status_filter(status: str | None, get: Callable[[dict], str | None]) -> list:
    if not status or status == "all":
        return []
    return [lambda row: get(row) == status]


def filter_products(
    products: list[dict], search: str | None = None, status: str | None = None
) -> list[dict]:
    """按标题、分类、创建者用户名搜索，按商品状态过滤。"""
    return _apply(
        products,
        search,
        lambda p: (p.get("title"), p.get("category"), _nested(p, "owner", "username")),
        _status_filter(status, lambda p: p.get("status")),
    )


def filter_users(
    users: list[dict],
    search: str | None = None,
    status: str | None = None,
    user_type: str | None = None,
) -> list[dict]:
    """
    按姓名、用户名、邮箱、手机号、创作者姓名、证件号搜索。

    user_type: all / creators（有创作者资料）/ regular（无创作者资料）。
    status 比较的是创作者申请状态，无创作者资料的用户不会匹配非 all 状态。
    """
    predicates = _status_filter(status, lambda u: _nested(u, "creator", "status"))
    if user_type == "creators":
        predicates.append(lambda u: u.get("creator") is not None)
    elif user_type == "regular":
        predicates.append(lambda u: u.get("creator") is None)

    return _apply(
        users,
        search,
        lambda u: (
            u.get("name"),
            u.get("username"),
            u.get("email"),
            u.get("phone_number"),
            _nested(u, "creator", "full_name"),
            _nested(u, "creator", "ic_number"),
        ),
        predicates,
    )


def filter_withdrawals(
    withdrawals: list[dict], search: str | None = None, status: str | None = None
) -> list[dict]:
    """按创作者姓名、收款人姓名搜索，按提现状态过滤。"""
    return _apply(
        withdrawals,
        search,
        lambda w: (_nested(w, "creator", "full_name"), _nested(w, "creator", "recipient_name")),
        _status_filter(status, lambda w: w.get("status")),
    )
