from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

from .valuation_engine import (
    AudienceMetric,
    InvalidInputError,
    ValuationInput,
    ValuationResult,
    coerce_strategy,
    run_offer_model,
)

SESSION_SCHEMA_VERSION = "1.0"


class SessionStage(str, Enum):
    OFFER_MODELING = "offer_modeling"
    TOKENOMICS = "tokenomics"
    DUE_DILIGENCE = "due_diligence"


# Holds everything one pipeline stage hands to the next: the inputs the creator
# entered and the last result computed from them. Callers pass it along
# explicitly; nothing is stored on the server.
@dataclass
class ValuationSession:
    inputs: ValuationInput
    stage: SessionStage = SessionStage.OFFER_MODELING
    result: Optional[ValuationResult] = None
    schema_version: str = SESSION_SCHEMA_VERSION
    notes: Dict[str, Any] = field(default_factory=dict)

    def evaluate(self) -> "ValuationSession":
        """Return a copy carrying a freshly computed result."""
        return replace(self, result=run_offer_model(self.inputs))

    def advance(self, stage: SessionStage) -> "ValuationSession":
        return replace(self, stage=SessionStage(stage))

    def to_dict(self) -> Dict[str, Any]:
        inputs = asdict(self.inputs)
        inputs["revenue_share_strategy"] = coerce_strategy(self.inputs.revenue_share_strategy).value
        return {
            "schema_version": self.schema_version,
            "stage": self.stage.value,
            "inputs": inputs,
            "result": asdict(self.result) if self.result is not None else None,
            "notes": dict(self.notes),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ValuationSession":
        if not isinstance(payload, dict):
            raise InvalidInputError("Session payload must be an object")
        version = str(payload.get("schema_version") or "")
        if version.split(".")[0] != SESSION_SCHEMA_VERSION.split(".")[0]:
            raise InvalidInputError(f"Unsupported session schema version: {version or 'missing'}")

        try:
            raw_inputs = payload.get("inputs") or {}
            if not isinstance(raw_inputs, dict):
                raise InvalidInputError("Session inputs must be an object")
            raw_inputs = dict(raw_inputs)
            if "revenue_share_strategy" in raw_inputs:
                raw_inputs["revenue_share_strategy"] = coerce_strategy(raw_inputs["revenue_share_strategy"])
            metrics = raw_inputs.get("audience_metrics")
            if metrics is not None:
                raw_inputs["audience_metrics"] = tuple(AudienceMetric(**entry) for entry in metrics)
            inputs = ValuationInput(**raw_inputs)
            raw_result = payload.get("result")
            result = ValuationResult(**raw_result) if raw_result else None
            stage = SessionStage(payload.get("stage") or SessionStage.OFFER_MODELING.value)
            notes = payload.get("notes") or {}
            if not isinstance(notes, dict):
                raise InvalidInputError("Session notes must be an object")
        except InvalidInputError:
            raise
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"Malformed session payload: {exc}")
        return cls(
            inputs=inputs,
            stage=stage,
            result=result,
            schema_version=version,
            notes=dict(notes),
        )
