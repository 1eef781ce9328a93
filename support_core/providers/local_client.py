"""进程内本地模型后端（llama.cpp）。

模型在 open() 时加载、close() 时释放，也可以作为上下文管理器使用。
llama.cpp 的模型句柄不可重入，所有推理都经由单线程 executor 串行执行，
调用方只会看到一个带超时的 generate()。
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
import threading
from typing import Any, Callable, Dict, List, Optional

from support_core.domain.exceptions import BackendError
from support_core.domain.models import GenerationRequest, GenerationResult
from support_core.infrastructure.logging.logger import logger

# Mistral Instruct 模板
INSTRUCT_TEMPLATE = "<s>[INST] {system}\n\n{user} [/INST]"
TOP_K = 40
TOP_P = 0.9
STOP_SEQUENCES = ["</s>", "[INST]"]


class LocalLlamaBackend:
    name = "local"

    def __init__(self, settings, model_factory: Optional[Callable[[str], Any]] = None):
        self._settings = settings
        self._model_factory = model_factory or self._load_llama
        self._model: Any = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._state_lock = threading.Lock()

    # ---- 资源生命周期 ----

    def open(self) -> "LocalLlamaBackend":
        with self._state_lock:
            if self._model is not None:
                return self
            path = getattr(self._settings, "local_model_path", None)
            if not path:
                raise BackendError(code="MISSING_MODEL_PATH", message="LOCAL_MODEL_PATH not set")
            try:
                self._model = self._model_factory(path)
            except Exception as e:
                raise BackendError(code="MODEL_LOAD_ERROR", message=f"Could not load model {path}: {e}")
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="local-llm")
        logger.info("Loaded local model", extra={"extra": {"model_path": str(path)}})
        return self

    def close(self) -> None:
        """释放模型。

        超时的推理可能仍占着工作线程，等待它结束最多 local_timeout 秒；
        剩余的收尾（关闭模型句柄）交给后台线程，在推理结束后完成。
        """

        with self._state_lock:
            model, executor = self._model, self._executor
            self._model = None
            self._executor = None
        if model is None and executor is None:
            return
        releaser = threading.Thread(
            target=self._release,
            args=(model, executor),
            name="local-llm-release",
            daemon=True,
        )
        releaser.start()
        releaser.join(timeout=self._timeout())
        if releaser.is_alive():
            logger.warning(
                "Local model still busy, closing in background",
                extra={"extra": {"waited_seconds": self._timeout()}},
            )

    def __enter__(self) -> "LocalLlamaBackend":
        return self.open()

    def __exit__(self, *exc) -> bool:
        self.close()
        return False

    # ---- GenerationBackend ----

    def generate(self, req: GenerationRequest) -> GenerationResult:
        model, executor = self._model, self._executor
        if model is None or executor is None:
            return GenerationResult.fail("unavailable", "local model not loaded")
        prompt = self.format_prompt(req)
        try:
            future = executor.submit(self._infer, model, prompt, req)
        except RuntimeError as e:
            # executor 已关闭
            return GenerationResult.fail("unavailable", str(e))
        try:
            raw = future.result(timeout=self._timeout())
        except FutureTimeoutError:
            future.cancel()
            return GenerationResult.fail("timeout", f"local inference exceeded {self._timeout()}s")
        except Exception as e:
            return GenerationResult.fail("unknown", f"{type(e).__name__}: {e}")
        return self._parse_output(raw)

    def is_available(self) -> bool:
        return self._model is not None

    def list_models(self) -> List[str]:
        path = getattr(self._settings, "local_model_path", None)
        if self._model is None or not path:
            return []
        return [Path(path).name]

    def describe(self) -> Dict[str, Any]:
        return {
            "backend": self.name,
            "model_path": getattr(self._settings, "local_model_path", None),
            "max_tokens": getattr(self._settings, "max_tokens", None),
            "temperature": getattr(self._settings, "temperature", None),
            "loaded": self._model is not None,
        }

    @staticmethod
    def format_prompt(req: GenerationRequest) -> str:
        return INSTRUCT_TEMPLATE.format(system=req.system_prompt, user=req.user_text)

    # ---- 内部实现 ----

    def _load_llama(self, path: str) -> Any:
        from llama_cpp import Llama

        return Llama(
            model_path=path,
            n_ctx=getattr(self._settings, "local_context_size", 2048),
            verbose=False,
        )

    @staticmethod
    def _release(model: Any, executor: Optional[ThreadPoolExecutor]) -> None:
        # 排队中的推理直接取消；句柄要等正在跑的那一次结束后才能关
        if executor is not None:
            executor.shutdown(wait=True, cancel_futures=True)
        if model is not None:
            closer = getattr(model, "close", None)
            if callable(closer):
                closer()
            logger.info("Closed local model")

    @staticmethod
    def _infer(model: Any, prompt: str, req: GenerationRequest) -> Any:
        return model(
            prompt,
            max_tokens=req.max_tokens,
            temperature=req.temperature,
            top_k=TOP_K,
            top_p=TOP_P,
            stop=STOP_SEQUENCES,
        )

    @staticmethod
    def _parse_output(raw: Any) -> GenerationResult:
        """解析 llama.cpp completion 输出：{"choices": [{"text": ...}]}。"""

        if isinstance(raw, str):
            text = raw
        elif isinstance(raw, dict):
            choices = raw.get("choices")
            if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
                return GenerationResult.fail("malformed_response", "missing choices")
            text = choices[0].get("text")
            if text is not None and not isinstance(text, str):
                return GenerationResult.fail("malformed_response", "text is not a string")
        else:
            return GenerationResult.fail("malformed_response", f"unexpected output type {type(raw).__name__}")
        if not text or not text.strip():
            return GenerationResult.fail("empty_response", "empty completion")
        return GenerationResult.ok(text.strip())

    def _timeout(self) -> float:
        return getattr(self._settings, "local_timeout", None) or 120.0
