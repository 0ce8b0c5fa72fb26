"""Generated auxiliary inputs: the linker version script and ``main.npdm``."""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any

from nxmod.errors import ManifestError
from nxmod.fs import set_mtime
from nxmod.layout import BuildLayout
from nxmod.observability import BuildLogger
from nxmod.process import ToolRunner

NPDM_TEMPLATE: dict[str, Any] = {
    "name": "Application",
    "title_id": "0x0100000000000000",
    "title_id_range_min": "0x0100000000000000",
    "title_id_range_max": "0x0100000000000000",
    "main_thread_stack_size": "0x00100000",
    "main_thread_priority": 44,
    "default_cpu_id": 0,
    "process_category": 0,
    "is_retail": True,
    "pool_partition": 0,
    "is_64_bit": True,
    "address_space_type": 1,
    "filesystem_access": {"permissions": "0xFFFFFFFFFFFFFFFF"},
    "service_access": ["*"],
    "service_host": ["*"],
    "kernel_capabilities": [
        {
            "type": "kernel_flags",
            "value": {
                "highest_thread_priority": 63,
                "lowest_thread_priority": 24,
                "lowest_cpu_id": 0,
                "highest_cpu_id": 3,
            },
        },
        {
            "type": "syscalls",
            "value": {
                "svcSetHeapSize": "0x01",
                "svcSetMemoryPermission": "0x02",
                "svcSetMemoryAttribute": "0x03",
                "svcMapMemory": "0x04",
                "svcUnmapMemory": "0x05",
                "svcQueryMemory": "0x06",
                "svcExitProcess": "0x07",
                "svcCreateThread": "0x08",
                "svcStartThread": "0x09",
                "svcExitThread": "0x0a",
                "svcSleepThread": "0x0b",
                "svcGetThreadPriority": "0x0c",
                "svcSetThreadPriority": "0x0d",
                "svcGetThreadCoreMask": "0x0e",
                "svcSetThreadCoreMask": "0x0f",
                "svcGetCurrentProcessorNumber": "0x10",
                "svcSignalEvent": "0x11",
                "svcClearEvent": "0x12",
                "svcMapSharedMemory": "0x13",
                "svcUnmapSharedMemory": "0x14",
                "svcCreateTransferMemory": "0x15",
                "svcCloseHandle": "0x16",
                "svcResetSignal": "0x17",
                "svcWaitSynchronization": "0x18",
                "svcCancelSynchronization": "0x19",
                "svcArbitrateLock": "0x1a",
                "svcArbitrateUnlock": "0x1b",
                "svcWaitProcessWideKeyAtomic": "0x1c",
                "svcSignalProcessWideKey": "0x1d",
                "svcGetSystemTick": "0x1e",
                "svcConnectToNamedPort": "0x1f",
                "svcSendSyncRequestLight": "0x20",
                "svcSendSyncRequest": "0x21",
                "svcSendSyncRequestWithUserBuffer": "0x22",
                "svcSendAsyncRequestWithUserBuffer": "0x23",
                "svcGetProcessId": "0x24",
                "svcGetThreadId": "0x25",
                "svcBreak": "0x26",
                "svcOutputDebugString": "0x27",
                "svcReturnFromException": "0x28",
                "svcGetInfo": "0x29",
                "svcWaitForAddress": "0x34",
                "svcSignalToAddress": "0x35",
                "svcCreateSession": "0x40",
                "svcAcceptSession": "0x41",
                "svcReplyAndReceiveLight": "0x42",
                "svcReplyAndReceive": "0x43",
                "svcReplyAndReceiveWithUserBuffer": "0x44",
                "svcCreateEvent": "0x45",
                "svcMapPhysicalMemoryUnsafe": "0x48",
                "svcUnmapPhysicalMemoryUnsafe": "0x49",
                "svcSetUnsafeLimit": "0x4a",
                "svcCreateCodeMemory": "0x4b",
                "svcControlCodeMemory": "0x4c",
                "svcReadWriteRegister": "0x4e",
                "svcCreateSharedMemory": "0x50",
                "svcMapTransferMemory": "0x51",
                "svcUnmapTransferMemory": "0x52",
                "svcQueryIoMapping": "0x55",
                "svcDebugActiveProcess": "0x60",
                "svcBreakDebugProcess": "0x61",
                "svcTerminateDebugProcess": "0x62",
                "svcGetDebugEvent": "0x63",
                "svcContinueDebugEvent": "0x64",
                "svcGetProcessList": "0x65",
                "svcGetThreadList": "0x66",
                "svcGetDebugThreadContext": "0x67",
                "svcSetDebugThreadContext": "0x68",
                "svcQueryDebugProcessMemory": "0x69",
                "svcReadDebugProcessMemory": "0x6a",
                "svcWriteDebugProcessMemory": "0x6b",
                "svcGetDebugThreadParam": "0x6d",
                "svcGetSystemInfo": "0x6f",
                "svcConnectToPort": "0x72",
                "svcSetProcessMemoryPermission": "0x73",
                "svcMapProcessMemory": "0x74",
                "svcUnmapProcessMemory": "0x75",
                "svcQueryProcessMemory": "0x76",
                "svcMapProcessCodeMemory": "0x77",
                "svcUnmapProcessCodeMemory": "0x78",
                "svcCallSecureMonitor": "0x7f",
            },
        },
        {"type": "min_kernel_version", "value": "0x0030"},
        {"type": "handle_table_size", "value": 512},
        {
            "type": "debug_flags",
            "value": {"allow_debug": True, "force_debug": True},
        },
    ],
}


def render_version_script(entry: str) -> str:
    return f"{{\n\tglobal:\n\t\t{entry};\n\tlocal: *;\n}};\n"


def write_version_script(path: Path, entry: str, *, logger: BuildLogger) -> Path:
    """Export only *entry* from the linked module."""
    logger.verbose("creating version script", stage="aux")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render_version_script(entry), encoding="utf-8")
    except OSError as exc:
        raise ManifestError(
            "Failed to create version script.",
            context={"path": str(path), "reason": str(exc)},
        ) from exc
    logger.info("Created", "verfile", stage="aux")
    return path


def render_manifest(title_id_hex: str) -> dict[str, Any]:
    payload = copy.deepcopy(NPDM_TEMPLATE)
    payload["title_id"] = f"0x{title_id_hex}"
    return payload


def generate_manifest(
    layout: BuildLayout,
    *,
    npdmtool: Path,
    runner: ToolRunner,
    title_id_hex: str,
    config_mtime: int,
    logger: BuildLogger,
) -> Path:
    """Render ``main.npdm.json`` and compile it into ``main.npdm``.

    The JSON's mtime is pinned to the configuration file's mtime; the
    orchestrator compares the two to detect configuration changes.
    """
    logger.info("Creating", "main.npdm", stage="aux")
    payload = render_manifest(title_id_hex)
    try:
        layout.manifest_json.parent.mkdir(parents=True, exist_ok=True)
        layout.manifest_json.write_text(json.dumps(payload, indent=4) + "\n", encoding="utf-8")
        set_mtime(layout.manifest_json, config_mtime)
    except OSError as exc:
        raise ManifestError(
            "Failed to write main.npdm.json.",
            context={"path": str(layout.manifest_json), "reason": str(exc)},
        ) from exc
    # npdmtool always prints warnings; keep its output out of the log
    result = runner.run([str(npdmtool), str(layout.manifest_json), str(layout.manifest)])
    if not result.ok:
        # an unpinned manifest forces regeneration on the next run
        layout.manifest_json.unlink(missing_ok=True)
    result.check(ManifestError, "npdmtool failed.", hint="Check that switch-tools is installed.")
    logger.verbose("created main.npdm", stage="aux")
    return layout.manifest
