"""OpenAI 兼容 chat-completion 后端适配器。

本模块负责：

1. 接收统一的 GenerationRequest。
2. 将其转换为 OpenAI 兼容的 HTTP 请求（GPT4All / llama.cpp server / vLLM 等均可）。
3. 调用 HTTP 接口，把网络/API 异常归类为 GenError。
4. 从响应 JSON 中取出 choices[0].message.content。

generate 不会向外抛异常，调用方只需要匹配 GenerationResult。
"""

from typing import Any, Dict, List
import json
import time

import httpx

from support_core.domain.models import GenerationRequest, GenerationResult
from support_core.providers.registry import REMOTE_CONFIG


class RemoteChatBackend:
    """远程 HTTP 后端实现。

    - name: 后端名称（供日志/健康检查使用）。
    - generate: 对外统一调用入口，返回 GenerationResult。
    """

    name = "remote"

    def __init__(self, settings):
        # Settings 里包含 base_url、model、超时等配置
        self._settings = settings

    @property
    def base_url(self) -> str:
        base = getattr(self._settings, "remote_base_url", None) or REMOTE_CONFIG.base_url
        return base.rstrip("/")

    @property
    def model(self) -> str:
        return getattr(self._settings, "remote_model", None) or REMOTE_CONFIG.model

    def generate(self, req: GenerationRequest) -> GenerationResult:
        """执行一次非流式生成调用。

        步骤：
        1. 构造 HTTP 请求 payload。
        2. 发送请求，超时 / 连接失败 / 服务端错误分别归类。
        3. 解析响应，内容为空与结构不符分别归类。

        httpx 的 timeout 只限制单次连接/读/写，这里另外按 http_timeout
        给整次调用设总时限，防止服务端一点点吐字节把请求拖住。
        """

        payload = self._build_payload(req)
        timeout = self._settings.http_timeout
        deadline = time.monotonic() + timeout
        try:
            with httpx.Client(timeout=timeout, trust_env=False) as client:
                with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=self._headers(),
                ) as resp:
                    status_code = resp.status_code
                    body = self._read_body(resp, deadline, timeout)
        except httpx.TimeoutException as e:
            return GenerationResult.fail("timeout", str(e))
        except httpx.RequestError as e:
            # 连接被拒绝、DNS 失败等：服务不可达
            return GenerationResult.fail("unavailable", str(e))
        except Exception as e:
            return GenerationResult.fail("unknown", f"{type(e).__name__}: {e}")

        if status_code == 429 or status_code >= 500:
            return GenerationResult.fail("unavailable", f"HTTP {status_code}")
        if status_code >= 400:
            text = body[:200].decode("utf-8", errors="replace")
            return GenerationResult.fail("unknown", f"HTTP {status_code}: {text}")
        try:
            data = json.loads(body)
        except ValueError as e:
            return GenerationResult.fail("malformed_response", f"invalid JSON: {e}")
        return self._parse_response(data)

    def is_available(self) -> bool:
        """探测 GET /models 是否返回 200。"""

        try:
            with httpx.Client(timeout=self._probe_timeout(), trust_env=False) as client:
                resp = client.get(f"{self.base_url}/models", headers=self._headers())
        except Exception:
            return False
        return resp.status_code == 200

    def list_models(self) -> List[str]:
        try:
            with httpx.Client(timeout=self._probe_timeout(), trust_env=False) as client:
                resp = client.get(f"{self.base_url}/models", headers=self._headers())
            if resp.status_code != 200:
                return []
            data = resp.json()
        except Exception:
            return []
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return []
        return [str(m["id"]) for m in items if isinstance(m, dict) and m.get("id")]

    def describe(self) -> Dict[str, Any]:
        return {
            "backend": self.name,
            "base_url": self.base_url,
            "model": self.model,
            "max_tokens": getattr(self._settings, "max_tokens", None),
            "temperature": getattr(self._settings, "temperature", None),
        }

    def _build_payload(self, req: GenerationRequest) -> dict:
        """将 GenerationRequest 转成 chat-completion 请求 JSON。"""

        return {
            "model": self.model,
            "max_tokens": req.max_tokens,
            "temperature": req.temperature,
            "messages": [
                {"role": "system", "content": req.system_prompt},
                {"role": "user", "content": req.user_text},
            ],
        }

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        api_key = getattr(self._settings, "remote_api_key", None)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def _probe_timeout(self) -> float:
        return getattr(self._settings, "probe_timeout", None) or 5.0

    @staticmethod
    def _read_body(resp: Any, deadline: float, timeout: float) -> bytes:
        chunks = []
        for chunk in resp.iter_bytes():
            chunks.append(chunk)
            if time.monotonic() > deadline:
                raise httpx.ReadTimeout(f"response not complete within {timeout}s")
        return b"".join(chunks)

    @staticmethod
    def _parse_response(data: Any) -> GenerationResult:
        """从响应 JSON 中提取 choices[0].message.content。"""

        if not isinstance(data, dict):
            return GenerationResult.fail("malformed_response", "response is not a JSON object")
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            return GenerationResult.fail("malformed_response", "missing choices")
        first = choices[0]
        message = first.get("message") if isinstance(first, dict) else None
        if not isinstance(message, dict):
            return GenerationResult.fail("malformed_response", "missing choices[0].message")
        content = message.get("content")
        if content is None or (isinstance(content, str) and not content.strip()):
            return GenerationResult.fail("empty_response", "empty content")
        if not isinstance(content, str):
            return GenerationResult.fail("malformed_response", "content is not a string")
        return GenerationResult.ok(content.strip())
