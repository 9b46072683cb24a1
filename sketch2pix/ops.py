from __future__ import annotations

from typing import Optional, Tuple

import torch
import torch.nn.functional as F

BATCHNORM_EPSILON = 1e-5
LEAKY_RELU_SLOPE = 0.2
STRIDE = 2


def preprocess(x: torch.Tensor) -> torch.Tensor:
    """Map pixel values in [0, 1] to the network range [-1, 1]."""
    return x * 2.0 - 1.0


def deprocess(x: torch.Tensor) -> torch.Tensor:
    """Inverse of `preprocess`. No clamping; quantization saturates later."""
    return (x + 1.0) / 2.0


def hwc_to_nchw(x: torch.Tensor) -> torch.Tensor:
    return x.permute(2, 0, 1).unsqueeze(0).contiguous()


def nchw_to_hwc(x: torch.Tensor) -> torch.Tensor:
    return x[0].permute(1, 2, 0).contiguous()


def _same_padding(size: int, kernel: int, stride: int) -> Tuple[int, int]:
    """(before, after) padding for a "same" conv whose output is ceil(size / stride)."""
    out = -(-size // stride)
    total = max((out - 1) * stride + kernel - size, 0)
    return total // 2, total - total // 2


def conv2d_same(x: torch.Tensor, kernel: torch.Tensor, bias: Optional[torch.Tensor] = None, stride: int = STRIDE) -> torch.Tensor:
    """Strided "same" convolution.

    x: (N, C_in, H, W); kernel in checkpoint layout (kh, kw, C_in, C_out).
    Returns (N, C_out, ceil(H / stride), ceil(W / stride)).
    """
    kh, kw = int(kernel.shape[0]), int(kernel.shape[1])
    top, bottom = _same_padding(x.shape[2], kh, stride)
    left, right = _same_padding(x.shape[3], kw, stride)
    x = F.pad(x, (left, right, top, bottom))
    weight = kernel.permute(3, 2, 0, 1)
    return F.conv2d(x, weight, bias, stride=stride)


def deconv2d_same(x: torch.Tensor, kernel: torch.Tensor, bias: Optional[torch.Tensor] = None, stride: int = STRIDE) -> torch.Tensor:
    """Strided "same" transposed convolution that multiplies H and W by `stride`.

    x: (N, C_in, H, W); kernel in checkpoint layout (kh, kw, C_out, C_in).
    The full transposed convolution is cropped by the padding the matching forward
    conv would use; rows/columns it never produces are zero.
    """
    kh, kw = int(kernel.shape[0]), int(kernel.shape[1])
    out_h, out_w = x.shape[2] * stride, x.shape[3] * stride
    weight = kernel.permute(3, 2, 0, 1)
    full = F.conv_transpose2d(x, weight, None, stride=stride)

    top, _ = _same_padding(out_h, kh, stride)
    left, _ = _same_padding(out_w, kw, stride)
    y = full[:, :, top:top + out_h, left:left + out_w]
    short_h, short_w = out_h - y.shape[2], out_w - y.shape[3]
    if short_h or short_w:
        y = F.pad(y, (0, short_w, 0, short_h))
    if bias is not None:
        y = y + bias.view(1, -1, 1, 1)
    return y


def batchnorm(x: torch.Tensor, scale: torch.Tensor, offset: torch.Tensor, eps: float = BATCHNORM_EPSILON) -> torch.Tensor:
    """Normalize with statistics of the current activation over H and W, per channel."""
    mean = x.mean(dim=(2, 3), keepdim=True)
    var = x.var(dim=(2, 3), unbiased=False, keepdim=True)
    inv = torch.rsqrt(var + eps) * scale.view(1, -1, 1, 1)
    return (x - mean) * inv + offset.view(1, -1, 1, 1)


def concat_skip(newer: torch.Tensor, skip: torch.Tensor) -> torch.Tensor:
    """Channel concatenation, always [newer, skip]."""
    return torch.cat([newer, skip], dim=1)
