"""
存储配置。

所有参数都有默认值，开箱即用；也可以从一个 JSON 文件加载，文件缺失时使用默认值。
"""

import json
import os
from dataclasses import dataclass, fields

DEFAULT_CONFIG_FILE = 'eventstore.json'


@dataclass
class StoreConfig:
    data_dir: str = 'data'
    file_name: str = 'events.db'
    page_size: int = 4096
    bucket_pages: int = 16   # 每个 bucket 占用的表空间页数
    buffer_size: int = 16    # 记录表缓冲池容量（页）
    max_record_size: int = 1024
    log_level: str = 'WARNING'

    @property
    def storage_path(self) -> str:
        return os.path.join(self.data_dir, self.file_name)

    def to_dict(self):
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @staticmethod
    def from_dict(d):
        known = {f.name for f in fields(StoreConfig)}
        unknown = set(d) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        return StoreConfig(**d)

    @classmethod
    def load(cls, path: str = DEFAULT_CONFIG_FILE) -> 'StoreConfig':
        """从 JSON 文件加载配置，文件不存在时返回默认配置。"""
        if not os.path.exists(path):
            return cls()
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a JSON object: {path}")
        return cls.from_dict(data)

    def save(self, path: str = DEFAULT_CONFIG_FILE) -> None:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2)
