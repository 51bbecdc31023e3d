from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

from g4recorder.models import Authentication, Automation, Job, Reference, Stage

RECORDER_STAGE = Reference(
    id="recorder-stage-01",
    name="Recorded Actions Stage",
    description="Stage to execute all actions captured during the recording session.",
)


@dataclass
class BaseConfig:
    """Document-level values that do not come from the recording itself."""
    auth_token: str = ""
    default_driver_parameters: Dict[str, Any] = field(default_factory=dict)
    settings: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_manifest(
        cls,
        manifest: Dict[str, Any],
        driver_parameters: Optional[Dict[str, Any]] = None,
    ) -> "BaseConfig":
        """
        driver_parameters, when non-empty, replaces the manifest's defaults;
        the session passes the parameters of the connection that captured
        the earliest event.
        """
        auth = manifest.get("authentication") or {}
        # Unlike the editor extension, which falls back to {}, an empty
        # connection value falls back to the manifest driverParameters.
        return cls(
            auth_token=auth.get("token") or "",
            default_driver_parameters=dict(driver_parameters or manifest.get("driverParameters") or {}),
            settings=dict(manifest.get("settings") or {}),
        )


def assemble(jobs: Sequence[Job], base_config: BaseConfig) -> Automation:
    """
    Wrap compiled jobs into a single-stage automation document.

    Jobs keep the order they are given in (the segmenter's group order).
    Nothing here touches the network or the viewer.
    """
    if not jobs:
        raise ValueError("cannot assemble an automation without jobs")

    return Automation(
        authentication=Authentication(token=base_config.auth_token),
        driver_parameters=deepcopy(base_config.default_driver_parameters),
        settings=deepcopy(base_config.settings),
        stages=[
            Stage(
                reference=RECORDER_STAGE.model_copy(),
                jobs=[job.model_copy(deep=True) for job in jobs],
            )
        ],
    )
