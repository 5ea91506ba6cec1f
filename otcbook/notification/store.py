"""本地持久化：键值存储、通知已读状态、视图选择"""
import json
import logging
import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Set

from ..analysis.pipeline import ClassFilter, OwnerFilter, SortDirection, SortField, StatusFilter

logger = logging.getLogger(__name__)

READ_KEY = "notifications_read"
LAST_SEEN_KEY = "notifications_last_seen"
CHECKPOINT_KEY = "notifications_checkpoint"
EVENTS_KEY = "notifications_events"
VIEW_KEY = "view_state"


class KeyValueStore:
    """注入式键值存储接口（值需可 JSON 序列化）"""

    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self, prefix: str = "") -> List[str]:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    """内存存储，测试与无状态运行使用"""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class JsonFileStore(MemoryStore):
    """JSON 文件存储：每次写入整体落盘"""

    def __init__(self, filepath: str):
        super().__init__()
        self.filepath = filepath
        self._load()

    def set(self, key: str, value: Any) -> None:
        super().set(key, value)
        self.save()

    def delete(self, key: str) -> None:
        super().delete(key)
        self.save()

    def save(self) -> None:
        """写临时文件后替换，避免中途崩溃留下半截文件"""
        tmp = f"{self.filepath}.tmp"
        try:
            with open(tmp, "w") as f:
                json.dump(self._data, f, indent=2, sort_keys=True)
            os.replace(tmp, self.filepath)
        except OSError as e:
            logger.error(f"Failed to save state file {self.filepath}: {e}")

    def _load(self) -> None:
        try:
            with open(self.filepath, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            return
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to load state file {self.filepath}: {e}")
            return
        if isinstance(data, dict):
            self._data = data
            logger.info(f"Loaded {len(data)} keys from {self.filepath}")


def viewer_key(prefix: str, viewer: str) -> str:
    return f"{prefix}_{viewer.lower()}"


def notification_id(tx_ref: str, order_id: int) -> str:
    return f"{tx_ref}-{order_id}"


class ReadStateStore:
    """按钱包地址保存的已读集合与最后查看时间"""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def read_ids(self, viewer: str) -> Set[str]:
        return set(self.store.get(viewer_key(READ_KEY, viewer), []))

    def _save_read(self, viewer: str, ids: Set[str]) -> None:
        self.store.set(viewer_key(READ_KEY, viewer), sorted(ids))

    def is_read(self, viewer: str, nid: str) -> bool:
        return nid in self.read_ids(viewer)

    def mark_read(self, viewer: str, nid: str) -> None:
        ids = self.read_ids(viewer)
        if nid not in ids:
            ids.add(nid)
            self._save_read(viewer, ids)

    def mark_unread(self, viewer: str, nid: str) -> None:
        ids = self.read_ids(viewer)
        if nid in ids:
            ids.discard(nid)
            self._save_read(viewer, ids)

    def toggle_read(self, viewer: str, nid: str) -> bool:
        """切换已读状态，返回切换后是否已读"""
        if self.is_read(viewer, nid):
            self.mark_unread(viewer, nid)
            return False
        self.mark_read(viewer, nid)
        return True

    def last_seen(self, viewer: str) -> int:
        return int(self.store.get(viewer_key(LAST_SEEN_KEY, viewer), 0) or 0)

    def mark_seen(self, viewer: str, timestamp: int) -> None:
        self.store.set(viewer_key(LAST_SEEN_KEY, viewer), int(timestamp))


@dataclass
class ViewState:
    """订单列表的筛选/排序选择"""
    class_filter: ClassFilter = ClassFilter.ALL
    owner_filter: OwnerFilter = OwnerFilter.ALL
    status_filter: StatusFilter = StatusFilter.ACTIVE
    sort_field: SortField = SortField.EXPIRATION
    sort_direction: SortDirection = SortDirection.DESC
    search: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {k: (v.value if hasattr(v, "value") else v) for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ViewState":
        """未知取值回退到默认值"""
        state = cls()
        enums = {
            "class_filter": ClassFilter,
            "owner_filter": OwnerFilter,
            "status_filter": StatusFilter,
            "sort_field": SortField,
            "sort_direction": SortDirection,
        }
        for name, enum_cls in enums.items():
            if name in data:
                try:
                    setattr(state, name, enum_cls(data[name]))
                except ValueError:
                    logger.debug(f"Ignoring unknown {name} value {data[name]!r}")
        state.search = str(data.get("search", ""))
        return state


def load_view_state(store: KeyValueStore) -> ViewState:
    return ViewState.from_dict(store.get(VIEW_KEY, {}) or {})


def save_view_state(store: KeyValueStore, state: ViewState) -> None:
    store.set(VIEW_KEY, state.to_dict())
