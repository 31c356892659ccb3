from pyauction.config import PredictionWeights, ValuationWeights
from pyauction.config_loader import WeightsProfile


def test_profile_round_trip(tmp_path):
    path = tmp_path / "weights.json"
    WeightsProfile.from_weights(ValuationWeights(), PredictionWeights()).save(path)

    loaded = WeightsProfile.load(path)
    assert loaded.valuation_weights() == ValuationWeights()
    assert loaded.prediction_weights() == PredictionWeights()


def test_profile_overrides_selected_fields():
    profile = WeightsProfile(
        valuation={"keeper_bonus": 20, "price_curve": [[0, 0], [100, 1]]},
        prediction={"role_targets": {"BATTER": 4}, "not_a_weight": 1},
    )
    valuation = profile.valuation_weights()
    prediction = profile.prediction_weights()

    assert valuation.keeper_bonus == 20
    assert valuation.price_curve == ((0, 0), (100, 1))
    assert valuation.allrounder_bonus == ValuationWeights().allrounder_bonus
    assert prediction.role_targets == {"BATTER": 4}
    assert not hasattr(prediction, "not_a_weight")
