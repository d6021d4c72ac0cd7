"""Volume group specifications and per-node status records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

PHASE_PROGRESSING = "Progressing"
PHASE_READY = "Ready"
PHASE_FAILED = "Failed"
PHASES = (PHASE_PROGRESSING, PHASE_READY, PHASE_FAILED)

THIN_POOL_MIN_SIZE_PERCENT = 10
THIN_POOL_MAX_SIZE_PERCENT = 90
DEFAULT_THIN_POOL_SIZE_PERCENT = 90
DEFAULT_OVERPROVISION_RATIO = 10.0


@dataclass(frozen=True)
class NodeSelectorRequirement:
    key: str
    operator: str
    values: tuple[str, ...] = ()


@dataclass(frozen=True)
class NodeSelectorTerm:
    match_expressions: tuple[NodeSelectorRequirement, ...] = ()
    match_fields: tuple[NodeSelectorRequirement, ...] = ()


@dataclass(frozen=True)
class NodeSelector:
    """Kubernetes-style node selector: terms are OR'd together."""

    terms: tuple[NodeSelectorTerm, ...] = ()


@dataclass(frozen=True)
class DeviceSelector:
    paths: tuple[str, ...] = ()
    optional_paths: tuple[str, ...] = ()
    force_wipe: bool = False

    @property
    def constrained(self) -> bool:
        return bool(self.paths or self.optional_paths)


@dataclass(frozen=True)
class ThinPoolConfig:
    name: str
    size_percent: int = DEFAULT_THIN_POOL_SIZE_PERCENT
    overprovision_ratio: float = DEFAULT_OVERPROVISION_RATIO


@dataclass(frozen=True)
class OwnerReference:
    kind: str
    name: str
    api_version: str = ""
    uid: str = ""


@dataclass
class VolumeGroupSpec:
    """Desired state of one volume group plus the object metadata around it."""

    name: str
    namespace: str = ""
    node_selector: Optional[NodeSelector] = None
    device_selector: Optional[DeviceSelector] = None
    thin_pool_config: Optional[ThinPoolConfig] = None
    default: bool = False
    finalizers: List[str] = field(default_factory=list)
    deletion_requested: bool = False
    owner_references: List[OwnerReference] = field(default_factory=list)

    @property
    def force_wipe(self) -> bool:
        return self.device_selector is not None and self.device_selector.force_wipe

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VolumeGroupSpec":
        """Build a spec from a Kubernetes-shaped mapping.

        Accepts either a full object (``metadata`` plus ``spec``) or a bare
        mapping where ``name`` sits next to the spec fields.
        """

        metadata = data.get("metadata") or {}
        body = data.get("spec") if "spec" in data else data
        body = body or {}
        name = str(metadata.get("name") or data.get("name") or "").strip()
        if not name:
            raise ValueError("volume group name must not be empty")

        device_selector = None
        raw_selector = body.get("deviceSelector")
        if raw_selector is not None:
            device_selector = DeviceSelector(
                paths=tuple(str(p) for p in raw_selector.get("paths") or ()),
                optional_paths=tuple(str(p) for p in raw_selector.get("optionalPaths") or ()),
                force_wipe=bool(raw_selector.get("forceWipeDevicesAndDestroyAllData", False)),
            )

        thin_pool = None
        raw_thin = body.get("thinPoolConfig")
        if raw_thin is not None:
            thin_pool = _parse_thin_pool(raw_thin)

        node_selector = None
        raw_node = body.get("nodeSelector")
        if raw_node is not None:
            node_selector = _parse_node_selector(raw_node)

        owners = [
            OwnerReference(
                kind=str(ref.get("kind", "")),
                name=str(ref.get("name", "")),
                api_version=str(ref.get("apiVersion", "")),
                uid=str(ref.get("uid", "")),
            )
            for ref in metadata.get("ownerReferences") or ()
        ]

        return cls(
            name=name,
            namespace=str(metadata.get("namespace") or data.get("namespace") or ""),
            node_selector=node_selector,
            device_selector=device_selector,
            thin_pool_config=thin_pool,
            default=bool(body.get("default", False)),
            finalizers=[str(item) for item in metadata.get("finalizers") or ()],
            deletion_requested=bool(
                metadata.get("deletionTimestamp") or data.get("deletionRequested")
            ),
            owner_references=owners,
        )

    def to_dict(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"name": self.name, "finalizers": list(self.finalizers)}
        if self.namespace:
            metadata["namespace"] = self.namespace
        if self.owner_references:
            metadata["ownerReferences"] = [
                {"kind": ref.kind, "name": ref.name, "apiVersion": ref.api_version, "uid": ref.uid}
                for ref in self.owner_references
            ]
        body: Dict[str, Any] = {"default": self.default}
        if self.device_selector is not None:
            body["deviceSelector"] = {
                "paths": list(self.device_selector.paths),
                "optionalPaths": list(self.device_selector.optional_paths),
                "forceWipeDevicesAndDestroyAllData": self.device_selector.force_wipe,
            }
        if self.thin_pool_config is not None:
            body["thinPoolConfig"] = {
                "name": self.thin_pool_config.name,
                "sizePercent": self.thin_pool_config.size_percent,
                "overprovisionRatio": self.thin_pool_config.overprovision_ratio,
            }
        if self.node_selector is not None:
            body["nodeSelector"] = _node_selector_to_dict(self.node_selector)
        data: Dict[str, Any] = {"metadata": metadata, "spec": body}
        if self.deletion_requested:
            data["deletionRequested"] = True
        return data


@dataclass(frozen=True)
class ExcludedDevice:
    device: str
    reasons: tuple[str, ...]


@dataclass
class NodeVolumeGroupStatus:
    """Observed state of one volume group on one node."""

    node: str
    name: str
    phase: str = PHASE_PROGRESSING
    devices: List[str] = field(default_factory=list)
    excluded: List[ExcludedDevice] = field(default_factory=list)
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node": self.node,
            "name": self.name,
            "phase": self.phase,
            "devices": list(self.devices),
            "excluded": [
                {"device": item.device, "reasons": list(item.reasons)} for item in self.excluded
            ],
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NodeVolumeGroupStatus":
        phase = str(data.get("phase") or PHASE_PROGRESSING)
        if phase not in PHASES:
            raise ValueError(f"unknown volume group phase: {phase}")
        return cls(
            node=str(data.get("node", "")),
            name=str(data.get("name", "")),
            phase=phase,
            devices=[str(item) for item in data.get("devices") or ()],
            excluded=[
                ExcludedDevice(str(item.get("device", "")), tuple(item.get("reasons") or ()))
                for item in data.get("excluded") or ()
            ],
            reason=str(data.get("reason") or ""),
        )


def _parse_thin_pool(raw: Mapping[str, Any]) -> ThinPoolConfig:
    name = str(raw.get("name") or "").strip()
    if not name:
        raise ValueError("thinPoolConfig.name must not be empty")
    size_percent = int(raw.get("sizePercent", DEFAULT_THIN_POOL_SIZE_PERCENT))
    if not THIN_POOL_MIN_SIZE_PERCENT <= size_percent <= THIN_POOL_MAX_SIZE_PERCENT:
        raise ValueError(
            f"thinPoolConfig.sizePercent must be between {THIN_POOL_MIN_SIZE_PERCENT} "
            f"and {THIN_POOL_MAX_SIZE_PERCENT}, got {size_percent}"
        )
    ratio = float(raw.get("overprovisionRatio", DEFAULT_OVERPROVISION_RATIO))
    if ratio < 1:
        raise ValueError(f"thinPoolConfig.overprovisionRatio must be at least 1, got {ratio}")
    return ThinPoolConfig(name=name, size_percent=size_percent, overprovision_ratio=ratio)


def _parse_requirements(raw: Any) -> tuple[NodeSelectorRequirement, ...]:
    return tuple(
        NodeSelectorRequirement(
            key=str(item["key"]),
            operator=str(item["operator"]),
            values=tuple(str(value) for value in item.get("values") or ()),
        )
        for item in raw or ()
    )


def _parse_node_selector(raw: Mapping[str, Any]) -> NodeSelector:
    terms = tuple(
        NodeSelectorTerm(
            match_expressions=_parse_requirements(term.get("matchExpressions")),
            match_fields=_parse_requirements(term.get("matchFields")),
        )
        for term in raw.get("nodeSelectorTerms") or ()
    )
    return NodeSelector(terms=terms)


def _requirements_to_list(requirements: tuple[NodeSelectorRequirement, ...]) -> List[Dict[str, Any]]:
    return [
        {"key": req.key, "operator": req.operator, "values": list(req.values)}
        for req in requirements
    ]


def _node_selector_to_dict(selector: NodeSelector) -> Dict[str, Any]:
    return {
        "nodeSelectorTerms": [
            {
                "matchExpressions": _requirements_to_list(term.match_expressions),
                "matchFields": _requirements_to_list(term.match_fields),
            }
            for term in selector.terms
        ]
    }
