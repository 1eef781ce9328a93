"""生成后端抽象接口。

流水线不直接依赖具体模型服务，而是依赖此协议：

- 每种后端实现一个 GenerationBackend（远程 HTTP / 本地进程内推理）。
- 负责：将 GenerationRequest 转成具体调用，并把结果解析为 GenerationResult。
- generate 不得向外抛异常：所有失败都转换为 GenError。

这样可以在不改编排代码的前提下切换后端。
"""

from typing import Any, Dict, List, Protocol

from support_core.domain.models import GenerationRequest, GenerationResult


class GenerationBackend(Protocol):
    """生成后端协议。

    实现者需要提供：
    - name: 后端名称，用于日志/健康检查。
    - generate(req): 执行一次生成，返回 GenerationResult（文本或 GenError）。
    - is_available(): 轻量可用性探测。
    """

    name: str

    def generate(self, req: GenerationRequest) -> GenerationResult:
        ...

    def is_available(self) -> bool:
        ...

    def list_models(self) -> List[str]:
        """列出后端可用的模型名，失败时返回空列表。"""

        ...

    def describe(self) -> Dict[str, Any]:
        """返回当前配置摘要（不含密钥），用于健康检查。"""

        ...
