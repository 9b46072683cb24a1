from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple, Union

import torch

from sketch2pix import ops
from sketch2pix.checkpoint import WeightSet
from sketch2pix.errors import ShapeMismatchError
from sketch2pix.scope import ActivationScope
from sketch2pix.stages import ENCODER, IMAGE_CHANNELS, NUM_LEVELS, STAGES, StageSpec, validate_weights

logger = logging.getLogger(__name__)

SIZE_MULTIPLE = 2 ** NUM_LEVELS


def _activate(x: torch.Tensor, name: Optional[str]) -> torch.Tensor:
    if name is None:
        return x
    if name == "leaky_relu":
        return torch.nn.functional.leaky_relu(x, ops.LEAKY_RELU_SLOPE)
    if name == "relu":
        return torch.relu(x)
    if name == "tanh":
        return torch.tanh(x)
    raise ValueError(f"Unknown activation: {name}")


def check_input_shape(shape: Tuple[int, ...]) -> None:
    """Raise ShapeMismatchError unless `shape` is (H, W, 3) with H and W multiples of 512."""
    if len(shape) != 3 or shape[2] != IMAGE_CHANNELS:
        raise ShapeMismatchError(f"Expected an (H, W, {IMAGE_CHANNELS}) image, got shape {tuple(shape)}")
    h, w = int(shape[0]), int(shape[1])
    if h <= 0 or w <= 0 or h % SIZE_MULTIPLE or w % SIZE_MULTIPLE:
        raise ShapeMismatchError(
            f"Image size {h}x{w} must be a positive multiple of {SIZE_MULTIPLE} "
            f"to pass through {NUM_LEVELS} halving stages"
        )


class Pix2PixGenerator:
    """U-Net generator evaluated straight from a `WeightSet`.

    The whole topology lives in `stages.STAGES`; `forward` is one loop over it.
    Weights are validated up front, so a bad checkpoint fails here and never
    halfway through a forward pass.
    """

    def __init__(
        self,
        weights: WeightSet,
        device: Union[str, torch.device] = "cpu",
        encoder_bias: bool = False,
        stages: Tuple[StageSpec, ...] = STAGES,
    ):
        self.out_channels: Dict[str, int] = validate_weights(weights, stages)
        self.device = torch.device(device)
        self.weights = weights if self.device.type == "cpu" else weights.to(self.device)
        self.encoder_bias = bool(encoder_bias)
        self.stages = stages

    def _run_stage(self, spec: StageSpec, x: torch.Tensor) -> torch.Tensor:
        w = self.weights
        x = _activate(x, spec.pre_activation)
        if spec.kind == ENCODER:
            bias = w[spec.bias_key] if self.encoder_bias else None
            x = ops.conv2d_same(x, w[spec.kernel_key], bias)
        else:
            x = ops.deconv2d_same(x, w[spec.kernel_key], w[spec.bias_key])
        if spec.batchnorm:
            x = ops.batchnorm(x, w[spec.gamma_key], w[spec.beta_key])
        return _activate(x, spec.post_activation)

    def forward(
        self,
        x: torch.Tensor,
        scope: Optional[ActivationScope] = None,
        return_activations: bool = False,
    ) -> Union[torch.Tensor, Tuple[torch.Tensor, List[torch.Tensor]]]:
        """Run all stages on a preprocessed (1, 3, H, W) tensor in [-1, 1].

        Returns the raw tanh output, plus every stage activation in execution order
        when `return_activations` is set.
        """
        if scope is None:
            scope = ActivationScope()
        with torch.no_grad(), scope:
            for spec in self.stages:
                if len(scope) == 0:
                    stage_input = x
                else:
                    stage_input = scope[-1]
                    if spec.skip_source is not None:
                        stage_input = ops.concat_skip(stage_input, scope[spec.skip_source])
                scope.track(self._run_stage(spec, stage_input))
                logger.debug("%s -> %s", spec.name, tuple(scope[-1].shape))

            out = scope[-1]
            activations = scope.snapshot() if return_activations else []
        if return_activations:
            return out, activations
        return out

    __call__ = forward

    def generate(self, image: torch.Tensor, scope: Optional[ActivationScope] = None) -> torch.Tensor:
        """(H, W, 3) float image in [0, 1] -> (H, W, 3) translated image, nominally in [0, 1]."""
        check_input_shape(tuple(image.shape))
        x = ops.hwc_to_nchw(ops.preprocess(image.to(self.device, dtype=torch.float32)))
        out = self.forward(x, scope=scope)
        return ops.deprocess(ops.nchw_to_hwc(out))
