from __future__ import annotations

from typing import Callable, Dict, Iterable, Optional

import pytest
import torch

from sketch2pix.checkpoint import WeightSet
from sketch2pix.stages import ENCODER, IMAGE_CHANNELS, STAGES

ENCODER_CHANNELS = 4
DECODER_CHANNELS = 3


def build_weights(
    seed: int = 0,
    kernel_size: int = 4,
    omit: Iterable[str] = (),
    overrides: Optional[Dict[str, torch.Tensor]] = None,
) -> WeightSet:
    """Small random weights that fit the fixed topology."""
    g = torch.Generator().manual_seed(seed)
    tensors: Dict[str, torch.Tensor] = {}
    layer_channels = []
    for spec in STAGES:
        c_in = layer_channels[-1] if layer_channels else IMAGE_CHANNELS
        if spec.skip_source is not None:
            c_in += layer_channels[spec.skip_source]
        if spec.kind == ENCODER:
            c_out = ENCODER_CHANNELS
            kernel = torch.randn(kernel_size, kernel_size, c_in, c_out, generator=g)
        else:
            c_out = IMAGE_CHANNELS if spec.index == 1 else DECODER_CHANNELS
            kernel = torch.randn(kernel_size, kernel_size, c_out, c_in, generator=g)
        tensors[spec.kernel_key] = kernel * 0.3
        tensors[spec.bias_key] = torch.randn(c_out, generator=g) * 0.1
        if spec.batchnorm:
            tensors[spec.gamma_key] = 1.0 + 0.1 * torch.randn(c_out, generator=g)
            tensors[spec.beta_key] = 0.1 * torch.randn(c_out, generator=g)
        layer_channels.append(c_out)

    tensors.update(overrides or {})
    for key in omit:
        tensors.pop(key)
    return WeightSet(tensors)


@pytest.fixture(scope="session")
def weights() -> WeightSet:
    return build_weights()


@pytest.fixture
def weight_factory() -> Callable[..., WeightSet]:
    return build_weights


@pytest.fixture
def gray_image() -> torch.Tensor:
    return torch.full((512, 512, 3), 128.0 / 255.0)
