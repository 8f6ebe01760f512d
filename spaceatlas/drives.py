from __future__ import annotations
import logging
import os
from typing import Dict, List, Optional

import psutil

logger = logging.getLogger(__name__)


def volume_usage(path: str) -> Optional[Dict[str, object]]:
    """Capacity of the volume holding ``path``, or None when it cannot be read."""
    try:
        u = psutil.disk_usage(path)
    except OSError as e:
        logger.debug("No volume usage for %s: %s", path, e)
        return None
    return {
        "total": int(u.total),
        "used": int(u.used),
        "free": int(u.free),
        "percent": float(u.percent),
    }


def list_drives() -> List[Dict[str, object]]:
    """Mounted volumes with their capacity, one entry per mountpoint."""
    volumes: Dict[str, Dict[str, object]] = {}
    for part in psutil.disk_partitions(all=False):
        if not part.mountpoint:
            continue
        mountpoint = os.path.abspath(part.mountpoint)
        if mountpoint in volumes:
            continue
        usage = volume_usage(mountpoint)
        if usage is None:
            continue
        volumes[mountpoint] = {"mountpoint": mountpoint, "fstype": part.fstype, **usage}
    return sorted(volumes.values(), key=lambda v: str(v["mountpoint"]).lower())
