"""
远程数据存储客户端：通过 HTTP 调用托管后端的数据接口（PostgREST）和存储接口。

主要功能：
- 按条件查询行集合（等值过滤、IN 过滤、排序、限制条数、嵌入关联）
- 仅统计行数（不传输行数据）
- 按主键/外键更新少量列
- 为私有存储对象生成限时签名访问地址
"""

import json
import logging

import httpx

logger = logging.getLogger(__name__)

SIGNED_URL_EXPIRES = 3600


class DataStoreError(Exception):
    """数据存储客户端异常。"""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


def _format_value(value) -> str:
    """将过滤值转换为 PostgREST 查询字符串格式。"""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _format_in(values) -> str:
    quoted = ",".join('"{}"'.format(str(v).replace('"', '\\"')) for v in values)
    return f"in.({quoted})"


def _parse_content_range(header: str | None) -> int:
    """解析 Content-Range 头中的总数，如 "0-9/42" 或 "*/42"。"""
    if not header or "/" not in header:
        return 0
    total = header.rsplit("/", 1)[1]
    if total == "*":
        return 0
    try:
        return int(total)
    except ValueError:
        raise DataStoreError(f"无法解析计数结果: {header}")


class DataStoreClient:
    """托管后端 API 客户端：数据读取、计数、更新与签名地址。"""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        初始化客户端，进程内只创建一次并共享。

        Args:
            base_url: 后端项目地址，如 https://xyz.supabase.co。
            api_key: 服务端密钥，同时作为 apikey 和 Bearer 令牌发送。
            timeout: 单次请求超时秒数。
            transport: 可选的 httpx 传输层（测试时注入）。
        """
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
            },
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        logger.debug("数据存储请求: %s %s", method, path)
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise DataStoreError(f"请求数据存储失败: {e}")

        if response.status_code >= 400:
            message = response.text
            code = None
            try:
                body = response.json()
                message = body.get("message") or body.get("error") or message
                code = body.get("code")
            except (json.JSONDecodeError, ValueError, AttributeError):
                pass
            raise DataStoreError(
                f"数据存储返回错误 [{response.status_code}]: {message}",
                status_code=response.status_code,
                code=code,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response):
        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise DataStoreError(f"解析数据存储响应失败: {e}")

    @staticmethod
    def _build_params(filters: dict | None, in_filters: dict | None) -> dict:
        params = {}
        for column, value in (filters or {}).items():
            params[column] = f"eq.{_format_value(value)}"
        for column, values in (in_filters or {}).items():
            params[column] = _format_in(values)
        return params

    async def select(
        self,
        table: str,
        columns: str = "*",
        *,
        filters: dict | None = None,
        in_filters: dict | None = None,
        order: str | None = None,
        desc: bool = True,
        limit: int | None = None,
    ) -> list[dict]:
        """
        查询行集合。

        Args:
            table: 表名。
            columns: 选择列，可包含嵌入关联，如 "*, owner:users!products_owner_fk(username)"。
            filters: 等值过滤 {列: 值}。
            in_filters: IN 过滤 {列: [值, ...]}。
            order: 排序列。
            desc: 是否降序（默认降序）。
            limit: 最多返回行数。

        Raises:
            DataStoreError: 请求失败或响应异常。
        """
        params = {"select": columns}
        params.update(self._build_params(filters, in_filters))
        if order:
            params["order"] = f"{order}.{'desc' if desc else 'asc'}"
        if limit is not None:
            params["limit"] = str(limit)

        response = await self._request("GET", f"/rest/v1/{table}", params=params)
        data = self._json(response)
        if not isinstance(data, list):
            raise DataStoreError(f"数据存储响应格式异常: table={table}")
        return data

    async def count(self, table: str, *, filters: dict | None = None) -> int:
        """仅返回满足条件的行数，不传输行数据。"""
        params = {"select": "*"}
        params.update(self._build_params(filters, None))
        response = await self._request(
            "HEAD",
            f"/rest/v1/{table}",
            params=params,
            headers={"Prefer": "count=exact"},
        )
        return _parse_content_range(response.headers.get("content-range"))

    async def update(self, table: str, values: dict, *, match: dict) -> list[dict]:
        """
        按等值条件更新少量列，返回更新后的行。

        Raises:
            DataStoreError: 缺少匹配条件或请求失败。
        """
        if not match:
            raise DataStoreError("更新操作必须指定匹配条件")
        response = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=self._build_params(match, None),
            json=values,
            headers={"Prefer": "return=representation"},
        )
        data = self._json(response)
        return data if isinstance(data, list) else []

    async def create_signed_url(
        self, bucket: str, path: str, expires_in: int = SIGNED_URL_EXPIRES
    ) -> str:
        """为私有存储对象生成限时签名访问地址（默认 1 小时）。"""
        response = await self._request(
            "POST",
            f"/storage/v1/object/sign/{bucket}/{path.lstrip('/')}",
            json={"expiresIn": expires_in},
        )
        data = self._json(response)
        signed = (data.get("signedURL") or data.get("signedUrl")) if isinstance(data, dict) else None
        if not signed:
            raise DataStoreError(f"签名地址响应缺少 signedURL 字段: {bucket}/{path}")
        if signed.startswith("http"):
            return signed
        return f"{self.base_url}/storage/v1{signed}"
