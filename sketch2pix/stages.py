"""Stage table for the fixed pix2pix generator topology.

The generator is 9 encoder stages followed by 9 decoder stages. Instead of building
weight names on the fly, every stage is one `StageSpec` record and the generator runs
them in order with a single loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sketch2pix.checkpoint import WeightSet
from sketch2pix.errors import ModelIntegrityError

NUM_LEVELS = 9
IMAGE_CHANNELS = 3

ENCODER = "encoder"
DECODER = "decoder"


@dataclass(frozen=True)
class StageSpec:
    """One stage of the generator."""

    index: int
    kind: str
    pre_activation: Optional[str]
    batchnorm: bool
    skip_source: Optional[int] = None
    post_activation: Optional[str] = None

    @property
    def scope(self) -> str:
        return f"generator/{self.kind}_{self.index}"

    @property
    def conv_name(self) -> str:
        return "conv2d" if self.kind == ENCODER else "conv2d_transpose"

    @property
    def kernel_key(self) -> str:
        return f"{self.scope}/{self.conv_name}/kernel"

    @property
    def bias_key(self) -> str:
        return f"{self.scope}/{self.conv_name}/bias"

    @property
    def gamma_key(self) -> str:
        return f"{self.scope}/batch_normalization/gamma"

    @property
    def beta_key(self) -> str:
        return f"{self.scope}/batch_normalization/beta"

    @property
    def name(self) -> str:
        return f"{self.kind}_{self.index}"

    def weight_keys(self) -> List[str]:
        keys = [self.kernel_key, self.bias_key]
        if self.batchnorm:
            keys += [self.gamma_key, self.beta_key]
        return keys


def build_stage_table(levels: int = NUM_LEVELS) -> Tuple[StageSpec, ...]:
    """Return the ordered stages: encoder_1..encoder_N, then decoder_N..decoder_1.

    Encoder outputs land at layer positions 0..N-1. Decoder `i` (N > i >= 2) reads the
    previous output concatenated with layer `i - 1`; decoder_1 reads layer 0.
    """
    stages: List[StageSpec] = [StageSpec(1, ENCODER, pre_activation=None, batchnorm=False)]
    for i in range(2, levels + 1):
        stages.append(StageSpec(i, ENCODER, pre_activation="leaky_relu", batchnorm=True))

    for i in range(levels, 1, -1):
        skip = None if i == levels else i - 1
        stages.append(StageSpec(i, DECODER, pre_activation="relu", batchnorm=True, skip_source=skip))
    stages.append(
        StageSpec(1, DECODER, pre_activation="relu", batchnorm=False, skip_source=0, post_activation="tanh")
    )
    return tuple(stages)


STAGES: Tuple[StageSpec, ...] = build_stage_table()


def required_keys(stages: Tuple[StageSpec, ...] = STAGES) -> List[str]:
    out: List[str] = []
    for spec in stages:
        out += spec.weight_keys()
    return out


def _check_vector(weights: WeightSet, key: str, length: int) -> None:
    shape = tuple(weights[key].shape)
    if shape != (length,):
        raise ModelIntegrityError(f"{key} has shape {shape}, expected ({length},)")


def validate_weights(weights: WeightSet, stages: Tuple[StageSpec, ...] = STAGES) -> Dict[str, int]:
    """Check that `weights` fits the topology; return output channels per stage name.

    Raises ModelIntegrityError on the first missing key or incompatible shape.
    """
    missing = weights.missing(required_keys(stages))
    if missing:
        raise ModelIntegrityError(f"Missing weight: {missing[0]} ({len(missing)} missing in total)")

    out_channels: Dict[str, int] = {}
    layer_channels: List[int] = []
    for spec in stages:
        kernel = weights[spec.kernel_key]
        if kernel.dim() != 4:
            raise ModelIntegrityError(f"{spec.kernel_key} must be 4D, got shape {tuple(kernel.shape)}")

        if spec.kind == ENCODER:
            k_in, k_out = int(kernel.shape[2]), int(kernel.shape[3])
        else:
            k_out, k_in = int(kernel.shape[2]), int(kernel.shape[3])

        expected_in = layer_channels[-1] if layer_channels else IMAGE_CHANNELS
        if spec.skip_source is not None:
            expected_in += layer_channels[spec.skip_source]
        if k_in != expected_in:
            raise ModelIntegrityError(
                f"{spec.kernel_key} expects {k_in} input channels but {spec.name} receives {expected_in}"
            )

        _check_vector(weights, spec.bias_key, k_out)
        if spec.batchnorm:
            _check_vector(weights, spec.gamma_key, k_out)
            _check_vector(weights, spec.beta_key, k_out)

        layer_channels.append(k_out)
        out_channels[spec.name] = k_out

    if layer_channels[-1] != IMAGE_CHANNELS:
        raise ModelIntegrityError(
            f"{stages[-1].kernel_key} produces {layer_channels[-1]} channels, expected {IMAGE_CHANNELS}"
        )
    return out_channels
