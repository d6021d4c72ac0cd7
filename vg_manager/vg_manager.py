"""CLI entry point for vg-manager."""

import argparse
import json
import os
import signal
import socket
import sys
import threading
from pathlib import Path
from typing import Dict, List, Sequence

import yaml

from . import __version__, events
from .api import VolumeGroupSpec
from .executor import HostExecutor
from .lvmd import LVMDConfigFile
from .manager import Manager
from .node import Node
from .reconciler import VGReconciler
from .state import FileObjectStore

DEFAULT_NAMESPACE = "openshift-storage"


def _node_name(value: str | None) -> str:
    if value:
        return value
    return os.environ.get("VG_MANAGER_NODE_NAME") or socket.gethostname()


def _parse_labels(values: Sequence[str]) -> Dict[str, str]:
    labels: Dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"node label must look like key=value, got {item!r}")
        labels[key] = value
    return labels


def _load_documents(path: str) -> List[VolumeGroupSpec]:
    """Read volume group specs from a YAML or JSON file (``-`` for stdin)."""

    if path == "-":
        text = sys.stdin.read()
    else:
        text = Path(path).read_text(encoding="utf-8")
    specs = []
    for document in yaml.safe_load_all(text):
        if document is None:
            continue
        if not isinstance(document, dict):
            raise ValueError(f"{path}: every document must be a mapping")
        items = document.get("items") if document.get("kind") == "List" else None
        for item in items if items is not None else [document]:
            specs.append(VolumeGroupSpec.from_dict(item))
    return specs


def _build_manager(args: argparse.Namespace, store: FileObjectStore) -> Manager:
    node = Node(_node_name(args.node_name), _parse_labels(args.node_label))
    namespace = os.environ.get("VG_MANAGER_NAMESPACE") or DEFAULT_NAMESPACE
    lvmd_path = Path(args.lvmd_config) if args.lvmd_config else None
    reconciler = VGReconciler(
        store,
        HostExecutor(),
        node,
        recorder=events.EventRecorder(events.LogEventSink(), node.name, namespace),
        lvmd=LVMDConfigFile(lvmd_path),
    )
    return Manager(reconciler, store)


def _cmd_run(args: argparse.Namespace, store: FileObjectStore) -> int:
    os.environ.setdefault("VG_MANAGER_LOG_EVENTS", "1")
    manager = _build_manager(args, store)
    if args.once:
        results = manager.run_once()
        failed = [name for name, result in results.items() if result is None]
        for name in failed:
            print(f"volumegroup/{name} failed", file=sys.stderr)
        return 1 if failed else 0

    stop = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        stop.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)
    manager.run_forever(stop)
    return 0


def _cmd_apply(args: argparse.Namespace, store: FileObjectStore) -> int:
    for spec in _load_documents(args.filename):
        existing = store.get_spec(spec.name)
        if existing is not None:
            # Finalizers and pending deletion belong to the stored object.
            spec.finalizers = existing.finalizers
            spec.deletion_requested = existing.deletion_requested or spec.deletion_requested
        store.save_spec(spec)
        print(f"volumegroup/{spec.name} {'configured' if existing is not None else 'created'}")
    return 0


def _cmd_delete(args: argparse.Namespace, store: FileObjectStore) -> int:
    spec = store.get_spec(args.name)
    if spec is None:
        print(f"volumegroup/{args.name} not found", file=sys.stderr)
        return 1
    if spec.finalizers:
        spec.deletion_requested = True
        store.save_spec(spec)
        print(f"volumegroup/{args.name} marked for deletion")
    else:
        store.delete_spec(args.name)
        print(f"volumegroup/{args.name} deleted")
    return 0


def _cmd_status(args: argparse.Namespace, store: FileObjectStore) -> int:
    node = _node_name(args.node_name)
    payload = [status.to_dict() for status in store.list_statuses(node)]
    print(json.dumps(payload, indent=2, sort_keys=True))
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vg-manager", description="Per-node LVM volume group manager")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--state-dir",
        help="Directory holding volume group specs and node status (default: $VG_MANAGER_STATE_DIR or /run/vg-manager)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Reconcile volume groups on this node")
    run.add_argument("--once", action="store_true", help="Run a single round and exit")
    run.add_argument("--node-name", help="Name of this node (default: $VG_MANAGER_NODE_NAME or the hostname)")
    run.add_argument(
        "--node-label",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Label of this node used for node selectors (can be repeated)",
    )
    run.add_argument("--lvmd-config", help="Path of the lvmd config file (default: $VG_MANAGER_LVMD_CONFIG)")
    run.set_defaults(func=_cmd_run)

    apply = subparsers.add_parser("apply", help="Create or update volume group specs")
    apply.add_argument("-f", "--filename", required=True, help="YAML or JSON file, or - for stdin")
    apply.set_defaults(func=_cmd_apply)

    delete = subparsers.add_parser("delete", help="Request deletion of a volume group")
    delete.add_argument("name")
    delete.set_defaults(func=_cmd_delete)

    status = subparsers.add_parser("status", help="Print the node status of every volume group")
    status.add_argument("--node-name", help="Name of this node (default: $VG_MANAGER_NODE_NAME or the hostname)")
    status.set_defaults(func=_cmd_status)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the vg-manager tool."""

    parser = _build_parser()
    args = parser.parse_args(argv)
    store = FileObjectStore(Path(args.state_dir) if args.state_dir else None)
    try:
        return args.func(args, store)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"vg-manager: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
