"""集中配置管理

替代各模块散落的 DEFAULT_* 常量，提供统一的配置入口。
支持从 YAML 文件加载 + 编程式覆盖（CLI 选项）。

镜像优先级与并发上限以显式值注入下载器，不作为隐藏全局状态读取；
get_config() 仅供 CLI 入口组装对象时使用。
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path

import yaml

from modpull.core.exceptions import ConfigError, ValidationError
from modpull.core.hashing import DEFAULT_ALGORITHM, is_supported
from modpull.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

# 并发下载上限的合法闭区间；每个在途下载都在内存中缓冲完整响应体
MIN_JOBS = 1
MAX_JOBS = 6

DEFAULT_MIRROR_PRIORITY = "gb,jade,wegfan,otobot"
DEFAULT_REGISTRY_URL = "https://maddie480.ovh/celeste/everest_update.yaml"
DEFAULT_API_MIRROR_URL = "https://everestapi.github.io/updatermirror/everest_update.yaml"

STEAM_MODS_DIRECTORY = ".local/share/Steam/steamapps/common/Celeste/Mods"


def default_state_dir() -> str:
    """应用状态目录: $XDG_STATE_HOME/modpull，缺省 ~/.local/state/modpull"""
    base = os.environ.get("XDG_STATE_HOME") or str(Path.home() / ".local" / "state")
    return str(Path(base) / "modpull")


def default_mods_dir() -> str:
    return str(Path.home() / STEAM_MODS_DIRECTORY)


@dataclass
class Config:
    """全局配置"""

    # 目录
    mods_dir: str = field(default_factory=default_mods_dir)
    state_dir: str = field(default_factory=default_state_dir)
    cache_file: str = "checksum_cache.json"
    blacklist_file: str = "updaterblacklist.txt"

    # 远程数据库
    registry_url: str = DEFAULT_REGISTRY_URL
    api_mirror_url: str = DEFAULT_API_MIRROR_URL
    use_api_mirror: bool = False

    # 下载
    mirror_priority: str = DEFAULT_MIRROR_PRIORITY
    jobs: int = 4
    timeout: float = 30.0
    digest_algorithm: str = DEFAULT_ALGORITHM

    # 清单
    manifest_names: list[str] = field(
        default_factory=lambda: ["everest.yaml", "everest.yml"],
    )
    builtin_packages: list[str] = field(
        default_factory=lambda: ["Everest", "EverestCore", "Celeste"],
    )

    # 放不到字段里的配置项
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str = "modpull.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"无法读取配置文件 {path}: {e}") from e
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件内容无效 {path}: {e}") from e
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)

    @property
    def cache_path(self) -> Path:
        return Path(self.state_dir) / self.cache_file

    @property
    def database_url(self) -> str:
        """按 use_api_mirror 选择远程数据库端点"""
        return self.api_mirror_url if self.use_api_mirror else self.registry_url

    def validate(self) -> None:
        """在任何网络活动之前校验配置

        Raises:
            ValidationError: 任一字段越界或无法识别
        """
        from modpull.core.mirrors import MirrorPriority

        validate_job_limit(self.jobs)
        MirrorPriority.parse(self.mirror_priority)
        if self.timeout <= 0:
            raise ValidationError(f"超时时间必须为正数: {self.timeout}")
        if not is_supported(self.digest_algorithm):
            raise ValidationError(f"不支持的摘要算法: {self.digest_algorithm}")
        if not self.manifest_names:
            raise ValidationError("manifest_names 不能为空")


def validate_job_limit(jobs: int) -> int:
    """校验并发上限位于 [MIN_JOBS, MAX_JOBS]"""
    if isinstance(jobs, bool) or not isinstance(jobs, int):
        raise ValidationError(f"并发数必须为整数: {jobs!r}")
    if not MIN_JOBS <= jobs <= MAX_JOBS:
        raise ValidationError(
            f"并发数 {jobs} 超出范围 [{MIN_JOBS}, {MAX_JOBS}]",
        )
    return jobs


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "modpull.yml") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
