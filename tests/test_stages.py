import pytest
import torch

from sketch2pix.checkpoint import WeightSet
from sketch2pix.errors import ModelIntegrityError
from sketch2pix.stages import DECODER, ENCODER, STAGES, build_stage_table, required_keys, validate_weights


def test_stage_table_order() -> None:
    names = [s.name for s in STAGES]
    assert names == [f"encoder_{i}" for i in range(1, 10)] + [f"decoder_{i}" for i in range(9, 0, -1)]


def test_encoder_stages() -> None:
    first = STAGES[0]
    assert first.pre_activation is None and not first.batchnorm
    for spec in STAGES[1:9]:
        assert spec.kind == ENCODER
        assert spec.pre_activation == "leaky_relu"
        assert spec.batchnorm
        assert spec.skip_source is None


def test_decoder_skip_sources() -> None:
    decoders = {s.index: s for s in STAGES if s.kind == DECODER}
    assert decoders[9].skip_source is None
    for i in range(8, 1, -1):
        assert decoders[i].skip_source == i - 1
    assert decoders[1].skip_source == 0


def test_final_stage_is_tanh_without_batchnorm() -> None:
    last = STAGES[-1]
    assert last.name == "decoder_1"
    assert last.pre_activation == "relu"
    assert last.post_activation == "tanh"
    assert not last.batchnorm


def test_weight_key_names() -> None:
    enc3 = STAGES[2]
    assert enc3.kernel_key == "generator/encoder_3/conv2d/kernel"
    assert enc3.gamma_key == "generator/encoder_3/batch_normalization/gamma"
    dec3 = next(s for s in STAGES if s.name == "decoder_3")
    assert dec3.bias_key == "generator/decoder_3/conv2d_transpose/bias"
    assert dec3.beta_key == "generator/decoder_3/batch_normalization/beta"


def test_required_keys() -> None:
    keys = required_keys()
    assert len(keys) == len(set(keys)) == 2 + 8 * 4 + 8 * 4 + 2
    assert "generator/encoder_1/batch_normalization/gamma" not in keys
    assert "generator/decoder_1/batch_normalization/beta" not in keys


def test_smaller_table() -> None:
    table = build_stage_table(levels=3)
    assert [s.name for s in table] == ["encoder_1", "encoder_2", "encoder_3", "decoder_3", "decoder_2", "decoder_1"]
    assert table[4].skip_source == 1


def test_validate_weights_reports_channels(weights: WeightSet) -> None:
    channels = validate_weights(weights)
    assert channels["encoder_1"] == 4
    assert channels["decoder_2"] == 3
    assert channels["decoder_1"] == 3


def test_validate_weights_rejects_missing_key(weight_factory) -> None:
    ws = weight_factory(omit=["generator/encoder_5/conv2d/kernel"])
    with pytest.raises(ModelIntegrityError, match="encoder_5/conv2d/kernel"):
        validate_weights(ws)


def test_validate_weights_rejects_wrong_bias_length(weight_factory) -> None:
    ws = weight_factory(overrides={"generator/decoder_4/conv2d_transpose/bias": torch.zeros(7)})
    with pytest.raises(ModelIntegrityError, match="decoder_4/conv2d_transpose/bias"):
        validate_weights(ws)


def test_validate_weights_rejects_decoder_without_skip_width(weights: WeightSet) -> None:
    key = "generator/decoder_6/conv2d_transpose/kernel"
    narrow = weights[key][:, :, :, :3]
    ws = WeightSet({**weights, key: narrow})
    with pytest.raises(ModelIntegrityError, match="input channels"):
        validate_weights(ws)


def test_validate_weights_rejects_non_rgb_output(weights: WeightSet) -> None:
    kernel_key = "generator/decoder_1/conv2d_transpose/kernel"
    bias_key = "generator/decoder_1/conv2d_transpose/bias"
    kernel = torch.cat([weights[kernel_key], weights[kernel_key][:, :, :1]], dim=2)
    ws = WeightSet({**weights, kernel_key: kernel, bias_key: torch.zeros(4)})
    with pytest.raises(ModelIntegrityError, match="expected 3"):
        validate_weights(ws)


def test_validate_weights_rejects_flat_kernel(weights: WeightSet) -> None:
    key = "generator/encoder_2/conv2d/kernel"
    ws = WeightSet({**weights, key: weights[key].flatten()})
    with pytest.raises(ModelIntegrityError, match="must be 4D"):
        validate_weights(ws)
