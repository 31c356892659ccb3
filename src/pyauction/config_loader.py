"""Persist and load model tuning profiles."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict

from pyauction.config import PredictionWeights, ValuationWeights, weights_from_mapping


@dataclass
class WeightsProfile:
    valuation: Dict[str, Any] = field(default_factory=dict)
    prediction: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> "WeightsProfile":
        data = json.loads(path.read_text(encoding="utf-8"))
        return cls(
            valuation=data.get("valuation", {}),
            prediction=data.get("prediction", {}),
        )

    @classmethod
    def from_weights(cls, valuation: ValuationWeights, prediction: PredictionWeights) -> "WeightsProfile":
        prediction_data = asdict(prediction)
        prediction_data["role_targets"] = dict(prediction.role_targets)
        return cls(valuation=asdict(valuation), prediction=prediction_data)

    def save(self, path: Path) -> None:
        payload = {
            "valuation": self.valuation,
            "prediction": self.prediction,
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def valuation_weights(self) -> ValuationWeights:
        return weights_from_mapping(ValuationWeights, self.valuation)

    def prediction_weights(self) -> PredictionWeights:
        return weights_from_mapping(PredictionWeights, self.prediction)
