"""
Data model for realtime APIs.

``DesiredConfig`` is what a user asks for, ``APISpec`` is the persisted
materialization of it, and ``APIIdentity`` is the identity record stamped on
every cluster object as labels.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, model_validator

from servelane.core.exceptions import LabelNotFoundError, ServelaneError

# annotations under this prefix belong to the operator and take part in equality
ANNOTATION_PREFIX = "servelane.dev/"

API_NAME_LABEL = "apiName"
API_ID_LABEL = "apiID"
DEPLOYMENT_ID_LABEL = "deploymentID"
API_KIND_LABEL = "apiKind"

REALTIME_API_KIND = "RealtimeAPI"

SPEC_FORMAT_VERSION = 1


class Compute(BaseModel):
    """Compute requested by each replica."""

    cpu: str = "200m"
    mem: Optional[str] = None
    gpu: int = Field(0, ge=0)


class Predictor(BaseModel):
    """Serving container definition."""

    image: str
    port: int = Field(8080, gt=0, lt=65536)
    command: Optional[List[str]] = None
    args: Optional[List[str]] = None
    env: Dict[str, str] = Field(default_factory=dict)


class Autoscaling(BaseModel):
    """Replica bounds and the target metric used by the autoscaler."""

    min_replicas: int = Field(1, ge=0)
    max_replicas: int = Field(100, ge=1)
    init_replicas: int = Field(1, ge=0)
    target_replica_concurrency: float = Field(1.0, gt=0)
    window: int = Field(60, gt=0)

    @model_validator(mode="after")
    def check_bounds(self) -> "Autoscaling":
        """Ensure min <= init <= max."""
        if self.min_replicas > self.max_replicas:
            raise ValueError("min_replicas cannot be greater than max_replicas")
        if not self.min_replicas <= self.init_replicas <= self.max_replicas:
            raise ValueError("init_replicas must be between min_replicas and max_replicas")
        return self

    def to_annotations(self) -> Dict[str, str]:
        """Encode as reserved-prefix annotations."""
        return {
            ANNOTATION_PREFIX + "min-replicas": str(self.min_replicas),
            ANNOTATION_PREFIX + "max-replicas": str(self.max_replicas),
            ANNOTATION_PREFIX + "init-replicas": str(self.init_replicas),
            ANNOTATION_PREFIX + "target-replica-concurrency": repr(self.target_replica_concurrency),
            ANNOTATION_PREFIX + "window": str(self.window),
        }

    @classmethod
    def from_annotations(cls, annotations: Mapping[str, str]) -> "Autoscaling":
        """Decode from reserved-prefix annotations, as written by ``to_annotations``."""
        def value(key: str) -> str:
            full_key = ANNOTATION_PREFIX + key
            if full_key not in annotations:
                raise ServelaneError(f"annotation {full_key} not found")
            return annotations[full_key]

        return cls(
            min_replicas=int(value("min-replicas")),
            max_replicas=int(value("max-replicas")),
            init_replicas=int(value("init-replicas")),
            target_replica_concurrency=float(value("target-replica-concurrency")),
            window=int(value("window")),
        )


class UpdateStrategy(BaseModel):
    """Rolling update bounds."""

    max_surge: str = "25%"
    max_unavailable: str = "25%"


class DesiredConfig(BaseModel):
    """User-supplied description of a realtime API."""

    name: str = Field(..., min_length=1, max_length=58, pattern=r"^[a-z]([-a-z0-9]*[a-z0-9])?$")
    endpoint: Optional[str] = None
    predictor: Predictor
    compute: Compute = Field(default_factory=Compute)
    autoscaling: Autoscaling = Field(default_factory=Autoscaling)
    update_strategy: UpdateStrategy = Field(default_factory=UpdateStrategy)

    @property
    def route(self) -> str:
        """HTTP path the API is served on."""
        return self.endpoint or f"/{self.name}"


class APISpec(BaseModel):
    """A desired config materialized for one project and rollout generation."""

    api: DesiredConfig
    id: str
    project_id: str
    deployment_id: str
    key: str
    last_updated: float = Field(default_factory=time.time)
    format_version: int = SPEC_FORMAT_VERSION

    @property
    def name(self) -> str:
        """Name of the API."""
        return self.api.name

    @property
    def identity(self) -> "APIIdentity":
        """Identity labels for the cluster objects of this spec."""
        return APIIdentity(api_name=self.name, api_id=self.id, deployment_id=self.deployment_id)


@dataclass(frozen=True)
class APIIdentity:
    """The identity record carried as labels by every cluster object of an API."""

    api_name: str
    api_id: str
    deployment_id: str

    def to_labels(self) -> Dict[str, str]:
        """Encode as object labels."""
        return {
            API_NAME_LABEL: self.api_name,
            API_ID_LABEL: self.api_id,
            DEPLOYMENT_ID_LABEL: self.deployment_id,
        }

    @classmethod
    def from_labels(cls, labels: Optional[Mapping[str, str]]) -> "APIIdentity":
        """Decode from object labels; missing labels decode as empty strings."""
        labels = labels or {}
        return cls(
            api_name=labels.get(API_NAME_LABEL, ""),
            api_id=labels.get(API_ID_LABEL, ""),
            deployment_id=labels.get(DEPLOYMENT_ID_LABEL, ""),
        )

    @classmethod
    def of(cls, obj: Mapping[str, Any]) -> "APIIdentity":
        """Identity of a cluster object, read from its metadata labels."""
        return cls.from_labels((obj.get("metadata") or {}).get("labels"))

    @classmethod
    def of_template(cls, deployment: Mapping[str, Any]) -> "APIIdentity":
        """Identity stamped on the pods of a deployment, read from its pod template."""
        template = (deployment.get("spec") or {}).get("template") or {}
        return cls.from_labels((template.get("metadata") or {}).get("labels"))


def template_spec(deployment: Mapping[str, Any]) -> Dict[str, Any]:
    """Pod spec of a deployment's template."""
    return (((deployment.get("spec") or {}).get("template") or {}).get("spec")) or {}


def object_name(obj: Mapping[str, Any]) -> str:
    """Name of a cluster object."""
    return (obj.get("metadata") or {}).get("name", "")


def get_label(obj: Mapping[str, Any], label: str) -> str:
    """Value of a required label; raises ``LabelNotFoundError`` if absent or empty."""
    value = ((obj.get("metadata") or {}).get("labels") or {}).get(label)
    if not value:
        raise LabelNotFoundError(label, object_name(obj))
    return value


def get_annotations(obj: Mapping[str, Any]) -> Dict[str, str]:
    """Annotations of a cluster object."""
    return dict((obj.get("metadata") or {}).get("annotations") or {})


def autoscaling_from_object(obj: Mapping[str, Any]) -> Autoscaling:
    """Autoscaling configuration carried by a workload's annotations."""
    return Autoscaling.from_annotations(get_annotations(obj))


__all__ = [
    "ANNOTATION_PREFIX",
    "API_NAME_LABEL",
    "API_ID_LABEL",
    "DEPLOYMENT_ID_LABEL",
    "Compute",
    "Predictor",
    "Autoscaling",
    "UpdateStrategy",
    "DesiredConfig",
    "APISpec",
    "APIIdentity",
    "template_spec",
    "object_name",
    "get_label",
    "get_annotations",
    "autoscaling_from_object",
]
