"""
客户端会话：显式持有本地私钥登记表、单个“在途” CSR 槽位与 CA 材料。

状态机：IDLE --create_csr--> HAS_LOCAL_CSR --submit 成功--> IDLE
私钥登记表只增不减；CA 材料只保存在内存中，不写入本地存储。
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from loguru import logger

from src.pki.core import CAMaterial

from .local_store import LocalStore

KEYS_KEY = "keys"
CSR_KEY = "csr"


class ClientState(str, Enum):
    IDLE = "idle"
    HAS_LOCAL_CSR = "has_local_csr"


@dataclass(frozen=True)
class LocalRequest:
    """本地暂存、尚未提交的 CSR 及其私钥。"""

    name: str
    csr: bytes
    key: bytes = field(repr=False)


class ClientSession:
    """
    单个客户端身份的本地状态。所有状态变化都立即写入 LocalStore。

    写入顺序固定为先私钥、后 CSR 槽位；加载时若发现 CSR 对应的私钥缺失
    （说明上次写入被中断），丢弃该 CSR 槽位。
    """

    def __init__(self, store: LocalStore) -> None:
        self._store = store
        self._keys: Dict[str, str] = {}
        self._request: Optional[LocalRequest] = None
        self._ca: Optional[CAMaterial] = None
        self._load()

    def _load(self) -> None:
        keys = self._store.get(KEYS_KEY) or {}
        self._keys = {str(k): str(v) for k, v in keys.items()} if isinstance(keys, dict) else {}

        slot = self._store.get(CSR_KEY)
        if not slot:
            return
        name = slot.get("name") if isinstance(slot, dict) else None
        if not name or name not in self._keys:
            logger.warning(f"本地 CSR 缺少对应私钥，已丢弃: {name}")
            self._store.delete(CSR_KEY)
            return
        try:
            csr = base64.b64decode(slot["csr"], validate=True)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"本地 CSR 槽位损坏，已丢弃: {name}: {e!r}")
            self._store.delete(CSR_KEY)
            return
        self._request = LocalRequest(
            name=name,
            csr=csr,
            key=self._keys[name].encode("utf-8"),
        )

    @property
    def state(self) -> ClientState:
        return ClientState.HAS_LOCAL_CSR if self._request else ClientState.IDLE

    @property
    def current_request(self) -> Optional[LocalRequest]:
        return self._request

    @property
    def ca(self) -> Optional[CAMaterial]:
        return self._ca

    def key_names(self) -> List[str]:
        return sorted(self._keys)

    def get_key(self, name: str) -> Optional[bytes]:
        key = self._keys.get(name)
        return None if key is None else key.encode("utf-8")

    def stage_request(self, name: str, key: bytes, csr: bytes) -> LocalRequest:
        """登记私钥并把 CSR 放入在途槽位，覆盖尚未提交的旧 CSR。"""
        if self._request is not None and self._request.name != name:
            logger.warning(f"覆盖尚未提交的本地 CSR: {self._request.name}")
        self._keys[name] = key.decode("utf-8")
        self._store.set(KEYS_KEY, self._keys)
        self._store.set(
            CSR_KEY,
            {"name": name, "csr": base64.b64encode(csr).decode("utf-8")},
        )
        self._request = LocalRequest(name=name, csr=csr, key=key)
        return self._request

    def clear_request(self) -> None:
        """清空在途槽位，私钥保留在登记表中。"""
        self._store.delete(CSR_KEY)
        self._request = None

    def set_ca(self, material: CAMaterial) -> None:
        self._ca = material

    def clear_ca(self) -> None:
        self._ca = None
