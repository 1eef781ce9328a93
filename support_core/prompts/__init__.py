"""提示词与固定文案加载工具。

按语言(locale) 从 prompts/<locale> 目录读取文本：
- crisis_system / default_system: 两套系统提示词模板（含 {word_limit} 占位符）。
- crisis_resources: 命中危机时追加到回复末尾的求助热线文案。
"""

from pathlib import Path
from typing import Optional


PROMPTS_DIR = Path(__file__).resolve().parent


def load_prompt(name: str, locale: str = "en") -> str:
    """根据名称和语言加载提示词文本（去掉首尾空白）。"""

    fname = PROMPTS_DIR / locale / f"{name}.md"
    return fname.read_text(encoding="utf-8").strip()


def load_crisis_resources(path: Optional[str] = None, locale: str = "en") -> str:
    """加载危机求助资源文案；path 为空时使用内置版本。"""

    if path:
        return Path(path).read_text(encoding="utf-8").strip()
    return load_prompt("crisis_resources", locale)
